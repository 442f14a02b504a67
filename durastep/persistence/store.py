"""Store abstraction for durable workflow state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncContextManager, Callable, Iterable, Mapping, Optional, Protocol

from .models import Entry, Execution

ExecutionVerifier = Callable[[Execution], None]


class DurableStore(Protocol):
    """Protocol for workflow state persistence backends."""

    async def bootstrap_execution(
        self,
        idempotency_key: str,
        serialized_job: dict,
        definition: dict,
        recover_to: str,
        verify: ExecutionVerifier,
    ) -> tuple[Execution, bool]:
        """Create or load-and-refresh the execution for ``idempotency_key``.

        Runs in a single transaction at the strongest isolation level the
        backend offers. ``verify`` is called with an existing execution before
        it is refreshed; raising from it aborts the transaction. Returns the
        execution and whether it was created.
        """

    def transaction(self) -> AsyncContextManager[None]:
        """Group the store calls made inside the block into one transaction.

        Calls from the same task join it; leaving the block with an exception
        rolls all of them back. A nested block rolls back only its own calls.
        """

    async def get_execution(self, execution_id: int) -> Execution | None:
        """Retrieve an execution by id."""

    async def find_execution(self, idempotency_key: str) -> Execution | None:
        """Retrieve an execution by idempotency key."""

    async def list_executions(self, finished: Optional[bool] = None) -> list[Execution]:
        """Return executions, optionally filtered on the finished sentinel."""

    async def update_recover_to(self, execution_id: int, recover_to: str) -> None:
        """Persist a new recovery point."""

    async def record_entry(
        self,
        execution_id: int,
        step: str,
        action: str,
        timestamp: datetime,
        data: dict | None = None,
    ) -> Entry:
        """Append an entry to the execution's log."""

    async def list_entries(
        self,
        execution_id: int,
        step: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[Entry]:
        """Return entries ordered by timestamp then insertion."""

    async def has_entry(self, execution_id: int, step: str, action: str) -> bool:
        """Return ``True`` if a matching entry exists."""

    async def set_values(self, execution_id: int, values: Mapping[str, Any]) -> None:
        """Upsert all ``values`` atomically."""

    async def get_values(self, execution_id: int, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for the keys that exist."""

    async def insert_value_if_absent(self, execution_id: int, key: str, value: Any) -> Any:
        """Store ``value`` unless ``key`` exists; return the stored value."""

    async def list_values(self, execution_id: int) -> dict[str, Any]:
        """Return every context value of the execution."""

    async def clear_finished_executions(
        self, finished_before: datetime, batch_size: int = 500
    ) -> int:
        """Delete finished executions last run before ``finished_before``."""
