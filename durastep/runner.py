"""Step runner: drives an execution from its recovery point to the end."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from .builder import FOR_EACH, Handler
from .constants import Action
from .context import Context
from .contracts import Continue, Halt, JobHandle, Repeat, StepOutcome
from .errors import (
    UndefinedMethodError,
    UndefinedStepError,
    UniterableForEachCollectionError,
    UnknownForEachCollectionError,
)
from .persistence import DurableStore, Entry, Execution
from .persistence.models import utcnow
from .plugins.pipeline import PluginPipeline
from .queues.base import BaseJobQueue, Wait

if TYPE_CHECKING:
    from .job import Job

_ACTIONS = {
    Continue: Action.SUCCEEDED,
    Halt: Action.HALTED,
    Repeat: Action.REPEATED,
}


async def _call(handler: Handler, *args: Any) -> Any:
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class StepRun:
    """What a step handler sees during one pass through its step.

    Handlers receive it as their first argument. Calling :meth:`halt_workflow`
    or :meth:`repeat_step` (or returning their result) decides the outcome;
    otherwise the workflow moves on to the next step.
    """

    def __init__(
        self,
        job: "Job",
        execution: Execution,
        ctx: Context,
        store: DurableStore,
        queue: BaseJobQueue,
        step: str,
    ) -> None:
        self.job = job
        self.execution = execution
        self.ctx = ctx
        self.store = store
        self.queue = queue
        self.step = step
        self.step_definition: Dict[str, Any] = execution.definition_for(step)
        self.requested: Optional[StepOutcome] = None

    def __repr__(self) -> str:
        return f"<StepRun step={self.step} execution_id={self.execution.id}>"

    @property
    def then(self) -> str:
        return self.step_definition["then"]

    def halt_workflow(self) -> Halt:
        self.requested = Halt()
        return self.requested

    def repeat_step(self) -> Repeat:
        self.requested = Repeat()
        return self.requested

    def advance(self) -> Continue:
        return Continue(next_step=self.then)

    async def record(
        self,
        action: str,
        step: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        **data: Any,
    ) -> Entry:
        return await self.store.record_entry(
            self.execution.id, step or self.step, action, timestamp or utcnow(), data
        )

    async def enqueue(
        self, job: "Job", wait: Wait = None, queue: Optional[str] = None
    ) -> JobHandle:
        if job.engine is None:
            job.engine = self.job.engine
        return await self.queue.enqueue(job, wait=wait, queue=queue)


class StepRunner:
    """State machine moving ``recover_to`` through the step graph."""

    def __init__(
        self,
        job: "Job",
        execution: Execution,
        store: DurableStore,
        queue: BaseJobQueue,
        handlers: Dict[str, Handler],
        pipeline: PluginPipeline,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.job = job
        self.execution = execution
        self.store = store
        self.queue = queue
        self.handlers = handlers
        self.pipeline = pipeline
        self.ctx = Context(store, execution.id)

    async def run(self) -> Execution:
        """Run steps until the workflow finishes or a step halts."""
        while not self.execution.finished:
            step = self.execution.recover_to
            if not self.execution.defines(step):
                raise UndefinedStepError(step)

            outcome = await self.run_step(step)
            if isinstance(outcome, Halt):
                self.logger.info(f"Execution {self.execution.id} halted at step {step}")
                break
            if isinstance(outcome, Repeat):
                continue

            await self.store.update_recover_to(self.execution.id, outcome.next_step)
            self.execution.recover_to = outcome.next_step
            self.logger.info(
                f"Execution {self.execution.id} progressed from {step} to {outcome.next_step}"
            )

        if self.execution.finished:
            self.logger.info(f"Execution {self.execution.id} finished")
        return self.execution

    async def run_step(self, step: str) -> StepOutcome:
        definition = self.execution.definition_for(step)
        if await self.store.has_entry(self.execution.id, step, Action.SUCCEEDED):
            self.logger.info(
                f"Step {step} already succeeded for execution {self.execution.id}; not re-running"
            )
            return Continue(next_step=definition["then"])

        run = StepRun(self.job, self.execution, self.ctx, self.store, self.queue, step)
        await run.record(Action.STARTED)
        self.logger.debug(f"Executing step {step} for execution {self.execution.id}")

        try:
            outcome = await self.pipeline.wrap(run, lambda: self._invoke(run))()
        except Exception as exc:
            self.logger.warning(
                f"Step {step} errored for execution {self.execution.id}: {exc!r}"
            )
            await self._record_error(run, exc)
            raise

        await run.record(_ACTIONS[type(outcome)])
        return outcome

    async def _record_error(self, run: StepRun, exc: Exception) -> None:
        try:
            await run.record(
                Action.ERRORED,
                error_class=f"{type(exc).__module__}.{type(exc).__qualname__}",
                message=str(exc),
            )
        except Exception as record_exc:
            # the step's own error must reach the queue, not this one
            self.logger.error(
                f"Failed to record error for step {run.step} of execution "
                f"{self.execution.id}: {record_exc!r}"
            )

    async def _invoke(self, run: StepRun) -> StepOutcome:
        handler = self.handlers.get(run.step)
        if handler is None:
            raise UndefinedMethodError(run.step_definition.get("does", run.step))

        collection_key = run.step_definition.get(FOR_EACH)
        if collection_key:
            return await self._iterate(run, handler, collection_key)

        result = await _call(handler, run)
        return self._outcome(run, result)

    async def _iterate(self, run: StepRun, handler: Handler, key: str) -> StepOutcome:
        found = await run.ctx.values_for(key)
        if key not in found:
            raise UnknownForEachCollectionError(key)
        collection = found[key]
        if isinstance(collection, (str, bytes)) or not isinstance(collection, Iterable):
            raise UniterableForEachCollectionError(key, collection)

        items = list(collection)
        cursor_key = f"{FOR_EACH}/{run.step}/cursor"
        cursor = await run.ctx.read(cursor_key, 0)
        if cursor >= len(items):
            return run.advance()

        outcome = self._outcome(run, await _call(handler, run, items[cursor]))
        if isinstance(outcome, Halt):
            return outcome
        await run.ctx.put(cursor_key, cursor + 1)
        return Repeat()

    @staticmethod
    def _outcome(run: StepRun, result: Any) -> StepOutcome:
        if isinstance(result, (Halt, Repeat)):
            return result
        if run.requested is not None:
            return run.requested
        return run.advance()
