"""Persisted key-value context shared by every attempt of an execution."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from .persistence import DurableStore
from .serialization import ValueDeserializer, ValueSerializer

logger = logging.getLogger(__name__)

MISSING: Any = object()


class Context:
    """Key-value store bound to one execution.

    Values survive retries and process restarts, which is what lets a step
    remember that it already enqueued a child job or how far it iterated.
    """

    def __init__(self, store: DurableStore, execution_id: int) -> None:
        self._store = store
        self.execution_id = execution_id

    def __repr__(self) -> str:
        return f"<Context execution_id={self.execution_id}>"

    async def set(self, values: Optional[Mapping[str, Any]] = None, **pairs: Any) -> None:
        """Upsert all given pairs in a single atomic write."""
        merged = dict(values or {})
        merged.update(pairs)
        if not merged:
            return
        serialized = {str(key): ValueSerializer.serialize(value) for key, value in merged.items()}
        await self._store.set_values(self.execution_id, serialized)
        logger.debug(f"Set context {sorted(serialized)} for execution {self.execution_id}")

    async def values_for(self, *keys: Any) -> dict[str, Any]:
        """Return a mapping of the requested keys that exist."""
        stored = await self._store.get_values(self.execution_id, [str(key) for key in keys])
        return {key: ValueDeserializer.deserialize(value) for key, value in stored.items()}

    async def get(self, *keys: Any) -> list[Any]:
        """Return the values present for ``keys``; missing keys are omitted."""
        return list((await self.values_for(*keys)).values())

    async def fetch(
        self,
        key: Any,
        default: Any = MISSING,
        fallback: Optional[Callable[[], Any | Awaitable[Any]]] = None,
    ) -> Any:
        """Return the stored value, or persist and return a computed one.

        ``fallback`` is only invoked when the key is absent, so wrapping a side
        effect in it makes that side effect happen once per execution. When two
        attempts race, the first persisted value wins and both return it.
        """
        key = str(key)
        stored = await self._store.get_values(self.execution_id, [key])
        if key in stored:
            return ValueDeserializer.deserialize(stored[key])

        if default is not MISSING:
            value = default
        elif fallback is not None:
            value = fallback()
            if inspect.isawaitable(value):
                value = await value
        else:
            raise KeyError(key)

        persisted = await self._store.insert_value_if_absent(
            self.execution_id, key, ValueSerializer.serialize(value)
        )
        return ValueDeserializer.deserialize(persisted)

    async def read(self, key: Any, default: Any = None) -> Any:
        """Single-key read, returning ``default`` when missing."""
        values = await self.values_for(key)
        return values.get(str(key), default)

    async def put(self, key: Any, value: Any) -> None:
        """Single-key write."""
        await self.set({str(key): value})

    def __getitem__(self, key: Any) -> Awaitable[Any]:
        return self.read(key)
