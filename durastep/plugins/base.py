"""Plugin interface and the context handed to plugins around each step."""

from __future__ import annotations

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncContextManager,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    runtime_checkable,
)

from ..context import MISSING
from ..contracts import Halt, JobHandle, Repeat, StepOutcome
from ..errors import UndefinedMethodError
from ..persistence import Entry, Execution
from ..queues.base import Wait

if TYPE_CHECKING:
    from ..job import Job
    from ..runner import StepRun

PLUGIN_INACTIVE: Any = object()

CallNext = Callable[[], Awaitable[StepOutcome]]


@runtime_checkable
class Plugin(Protocol):
    """Capability interface for step plugins.

    ``keyword`` names the step option the plugin reacts to. ``validate`` runs
    when the workflow is defined and returns the normalized option value that
    is stored in the definition. ``around_step`` wraps the step handler and
    may await ``call_next`` at most once.
    """

    keyword: str

    def validate(self, value: Any) -> Any: ...

    async def around_step(
        self, context: "PluginContext", call_next: CallNext
    ) -> Optional[StepOutcome]: ...


class PluginContext:
    """Capabilities a plugin may use while wrapping one step."""

    def __init__(self, plugin: Plugin, run: "StepRun") -> None:
        self._plugin = plugin
        self._run = run

    @property
    def execution(self) -> Execution:
        return self._run.execution

    @property
    def job(self) -> "Job":
        return self._run.job

    @property
    def current_step(self) -> str:
        return self._run.step

    @property
    def definition(self) -> Any:
        """This plugin's option value for the step, or ``PLUGIN_INACTIVE``."""
        return self._run.step_definition.get(self._plugin.keyword, PLUGIN_INACTIVE)

    @property
    def inactive(self) -> bool:
        return self.definition is PLUGIN_INACTIVE

    # context store ----------------------------------------------------
    async def set(self, values: Optional[dict] = None, **pairs: Any) -> None:
        await self._run.ctx.set(values, **pairs)

    async def get(self, *keys: Any) -> list[Any]:
        return await self._run.ctx.get(*keys)

    async def values_for(self, *keys: Any) -> dict[str, Any]:
        return await self._run.ctx.values_for(*keys)

    async def fetch(self, key: Any, default: Any = MISSING, fallback: Any = None) -> Any:
        return await self._run.ctx.fetch(key, default, fallback)

    def transaction(self) -> AsyncContextManager[None]:
        """A transaction on the workflow's own store."""
        return self._run.store.transaction()

    # entries ----------------------------------------------------------
    def plugin_action(self, action: str) -> str:
        return f"{self._plugin.keyword}/{action}"

    async def record(
        self,
        action: str,
        step: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        **data: Any,
    ) -> Entry:
        """Append an entry namespaced as ``<keyword>/<action>``."""
        return await self._run.record(
            self.plugin_action(action), step=step, timestamp=timestamp, **data
        )

    async def entries_for_action(
        self, action: str, step: Optional[str] = None
    ) -> list[Entry]:
        return await self._run.store.list_entries(
            self.execution.id, step=step, action=self.plugin_action(action)
        )

    # workflow primitives ---------------------------------------------
    async def enqueue_job(
        self, job: "Job", wait: Wait = None, queue: Optional[str] = None
    ) -> JobHandle:
        return await self._run.enqueue(job, wait=wait, queue=queue)

    def halt_workflow(self) -> Halt:
        return self._run.halt_workflow()

    def repeat_step(self) -> Repeat:
        return self._run.repeat_step()

    def resolve_method(self, name: str) -> Callable[..., Any]:
        method = getattr(self._run.job, name, None)
        if method is None or not callable(method):
            raise UndefinedMethodError(name)
        return method
