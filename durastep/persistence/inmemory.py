"""In-memory implementation of the durable store."""

from __future__ import annotations

import asyncio
import copy
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional

from ..constants import FINISHED_RECOVERY_POINT
from .models import Entry, Execution, utcnow
from .store import DurableStore, ExecutionVerifier


def _copy(data: Any) -> Any:
    # mimic a database round-trip so callers never share mutable state
    return json.loads(json.dumps(data))


class InMemoryStore(DurableStore):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._executions: Dict[int, Execution] = {}
        self._keys: Dict[str, int] = {}
        self._entries: List[Entry] = []
        self._values: Dict[int, Dict[str, Any]] = {}
        self._execution_id = 0
        self._entry_id = 0
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Restore the whole store if the block raises.

        Writes other tasks make while the block runs are rolled back with it.
        """
        snapshot = (
            copy.deepcopy(self._executions),
            dict(self._keys),
            list(self._entries),
            copy.deepcopy(self._values),
        )
        try:
            yield
        except BaseException:
            self._executions, self._keys, self._entries, self._values = snapshot
            raise

    # ------------------------------------------------------------------
    async def bootstrap_execution(
        self,
        idempotency_key: str,
        serialized_job: dict,
        definition: dict,
        recover_to: str,
        verify: ExecutionVerifier,
    ) -> tuple[Execution, bool]:
        async with self._lock:
            now = utcnow()
            execution_id = self._keys.get(idempotency_key)
            if execution_id is None:
                self._execution_id += 1
                execution = Execution(
                    id=self._execution_id,
                    idempotency_key=idempotency_key,
                    serialized_job=_copy(serialized_job),
                    definition=_copy(definition),
                    recover_to=recover_to,
                    last_run_at=now,
                    created_at=now,
                    updated_at=now,
                )
                self._executions[execution.id] = execution
                self._keys[idempotency_key] = execution.id
                self._values[execution.id] = {}
                return execution.model_copy(deep=True), True

            existing = self._executions[execution_id]
            verify(existing.model_copy(deep=True))
            existing.serialized_job = _copy(serialized_job)
            existing.last_run_at = now
            existing.updated_at = now
            return existing.model_copy(deep=True), False

    async def get_execution(self, execution_id: int) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def find_execution(self, idempotency_key: str) -> Execution | None:
        execution_id = self._keys.get(idempotency_key)
        if execution_id is None:
            return None
        return await self.get_execution(execution_id)

    async def list_executions(self, finished: Optional[bool] = None) -> list[Execution]:
        return [
            execution.model_copy(deep=True)
            for execution in self._executions.values()
            if finished is None or execution.finished == finished
        ]

    async def update_recover_to(self, execution_id: int, recover_to: str) -> None:
        execution = self._executions.get(execution_id)
        if execution:
            execution.recover_to = recover_to
            execution.updated_at = utcnow()

    # ------------------------------------------------------------------
    async def record_entry(
        self,
        execution_id: int,
        step: str,
        action: str,
        timestamp: datetime,
        data: dict | None = None,
    ) -> Entry:
        self._entry_id += 1
        entry = Entry(
            id=self._entry_id,
            execution_id=execution_id,
            step=step,
            action=action,
            timestamp=timestamp,
            data=_copy(data or {}),
        )
        self._entries.append(entry)
        return entry.model_copy(deep=True)

    async def list_entries(
        self,
        execution_id: int,
        step: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[Entry]:
        entries = [
            entry
            for entry in self._entries
            if entry.execution_id == execution_id
            and (step is None or entry.step == step)
            and (action is None or entry.action == action)
        ]
        entries.sort(key=lambda entry: (entry.timestamp, entry.id))
        return [entry.model_copy(deep=True) for entry in entries]

    async def has_entry(self, execution_id: int, step: str, action: str) -> bool:
        return any(
            entry.execution_id == execution_id
            and entry.step == step
            and entry.action == action
            for entry in self._entries
        )

    # ------------------------------------------------------------------
    async def set_values(self, execution_id: int, values: Mapping[str, Any]) -> None:
        async with self._lock:
            self._values.setdefault(execution_id, {}).update(_copy(dict(values)))

    async def get_values(self, execution_id: int, keys: Iterable[str]) -> dict[str, Any]:
        stored = self._values.get(execution_id, {})
        return {key: _copy(stored[key]) for key in keys if key in stored}

    async def insert_value_if_absent(self, execution_id: int, key: str, value: Any) -> Any:
        async with self._lock:
            stored = self._values.setdefault(execution_id, {})
            if key not in stored:
                stored[key] = _copy(value)
            return _copy(stored[key])

    async def list_values(self, execution_id: int) -> dict[str, Any]:
        return _copy(self._values.get(execution_id, {}))

    # ------------------------------------------------------------------
    async def clear_finished_executions(
        self, finished_before: datetime, batch_size: int = 500
    ) -> int:
        cleared = 0
        while True:
            async with self._lock:
                batch = [
                    execution
                    for execution in self._executions.values()
                    if execution.recover_to == FINISHED_RECOVERY_POINT
                    and execution.last_run_at is not None
                    and execution.last_run_at < finished_before
                ][:batch_size]
                if not batch:
                    return cleared
                for execution in batch:
                    del self._executions[execution.id]
                    del self._keys[execution.idempotency_key]
                    self._values.pop(execution.id, None)
                batch_ids = {execution.id for execution in batch}
                self._entries = [
                    entry for entry in self._entries if entry.execution_id not in batch_ids
                ]
                cleared += len(batch)
