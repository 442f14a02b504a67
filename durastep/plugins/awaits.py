"""Fan-out/fan-in: suspend a step until awaited child jobs complete."""

from __future__ import annotations

import inspect
import logging
from typing import Any, List, Optional

from ..contracts import AwaitedBy, SerializedJob, StepOutcome
from ..job import Job
from ..serialization import import_path
from .base import CallNext, PluginContext

logger = logging.getLogger(__name__)


def awaited_jobs_key(step: str) -> str:
    """Context key holding the serialized children awaited by ``step``."""
    return f"awaits/{step}/jobs"


class AwaitsPlugin:
    """Handles the ``awaits`` step option.

    ``awaits`` is either a list of job classes (or ``"module:Class"`` paths)
    built without arguments, or the name of a job method returning the job
    instances to await. The child set is frozen in the context the first time
    the step runs, enqueued once, and the step halts until every child has
    written a truthy marker under its job id.
    """

    keyword = "awaits"

    def validate(self, value: Any) -> Any:
        if isinstance(value, str):
            return value
        if not isinstance(value, (list, tuple)) or not value:
            raise ValueError("must be a method name or a non-empty list of job classes")

        paths: List[str] = []
        for item in value:
            if isinstance(item, type) and issubclass(item, Job):
                paths.append(item.job_class_path())
            elif isinstance(item, str):
                paths.append(item)
            else:
                raise ValueError(f"cannot await {item!r}; expected a Job subclass")
        return paths

    async def around_step(
        self, context: PluginContext, call_next: CallNext
    ) -> Optional[StepOutcome]:
        step = context.current_step
        children = await context.fetch(
            awaited_jobs_key(step), fallback=lambda: self._build_children(context)
        )
        children = [SerializedJob.from_json(child) for child in children]
        job_ids = [child.job_id for child in children]

        if not await context.entries_for_action("enqueued", step=step):
            for child in children:
                await context.enqueue_job(Job.deserialize(child))
            await context.record("enqueued", job_ids=job_ids)
            logger.info(
                f"Enqueued {len(job_ids)} awaited jobs for step {step} "
                f"of execution {context.execution.id}"
            )

        markers = await context.values_for(*job_ids)
        outstanding = [job_id for job_id in job_ids if not markers.get(job_id)]
        if outstanding:
            logger.info(
                f"Step {step} of execution {context.execution.id} awaits "
                f"{len(outstanding)} of {len(job_ids)} jobs"
            )
            return context.halt_workflow()

        return await call_next()

    async def _build_children(self, context: PluginContext) -> list[str]:
        option = context.definition
        if isinstance(option, str):
            jobs = context.resolve_method(option)()
            if inspect.isawaitable(jobs):
                jobs = await jobs
        else:
            jobs = [import_path(path)() for path in option]

        awaited_by = AwaitedBy(execution_id=context.execution.id, step=context.current_step)
        serialized = []
        for job in jobs:
            if not isinstance(job, Job):
                raise TypeError(f"awaited job must be a durastep Job, got {type(job).__name__}")
            job.awaited_by = awaited_by
            serialized.append(job.serialize().to_json())
        return serialized
