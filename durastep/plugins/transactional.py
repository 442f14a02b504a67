"""Run a step's handler inside a transaction."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from ..contracts import StepOutcome
from ..serialization import import_path, object_path
from .base import CallNext, PluginContext


class TransactionalStepPlugin:
    """Handles the ``transactional`` step option.

    ``transactional=True`` wraps the handler in a transaction on the workflow's
    store, so context writes of a step that raises are rolled back.
    ``transactional={"on": Resource}`` uses ``Resource.transaction()`` instead,
    for a class whose ``transaction`` returns an async context manager.
    ``transactional=False`` runs the handler as is.
    """

    keyword = "transactional"

    def validate(self, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if not isinstance(value, Mapping):
            raise ValueError("must be a boolean or a mapping")
        if "on" not in value:
            raise ValueError("mapping must have an 'on' key")
        target = value["on"]
        if not isinstance(target, type) or not callable(getattr(target, "transaction", None)):
            raise ValueError("'on' must be a class providing transaction()")
        return {"on": object_path(target)}

    async def around_step(
        self, context: PluginContext, call_next: CallNext
    ) -> Optional[StepOutcome]:
        option = context.definition
        if option is False:
            return await call_next()

        if option is True:
            transaction = context.transaction()
        else:
            transaction = import_path(option["on"]).transaction()
        async with transaction:
            return await call_next()
