"""Job base class: the thin adapter between user code, queues and the engine."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Optional, Sequence

from .constants import DEFAULT_QUEUE_NAME
from .context import Context
from .contracts import AwaitedBy, JobHandle, SerializedJob
from .queues.base import Wait
from .serialization import ValueDeserializer, ValueSerializer, import_path, object_path

if TYPE_CHECKING:
    from .builder import WorkflowBuilder
    from .engine import WorkflowEngine
    from .persistence import Execution
    from .plugins.base import Plugin

logger = logging.getLogger(__name__)


class Job:
    """Unit of background work delivered at least once by a job queue.

    Subclasses implement ``perform``. Constructor arguments are captured so the
    job can be serialized, re-enqueued and compared across attempts.

    Example:
        class ChargeCustomer(Job):
            async def perform(self, order_id: int) -> None:
                await self.execute_workflow(
                    unique_by=order_id,
                    define=lambda w: w.step("reserve").step("charge"),
                )

            async def reserve(self, run): ...
            async def charge(self, run): ...
    """

    queue_name: ClassVar[str] = DEFAULT_QUEUE_NAME

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.arguments = list(args)
        self.keyword_arguments = dict(kwargs)
        self.job_id = str(uuid.uuid4())
        self.executions = 0
        self.awaited_by: Optional[AwaitedBy] = None
        self.engine: Optional["WorkflowEngine"] = None
        self.execution: Optional["Execution"] = None
        self.workflow_defined = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} job_id={self.job_id}>"

    async def perform(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    @property
    def ctx(self) -> Context:
        """Context store of the workflow this attempt is running."""
        if self.execution is None or self.engine is None:
            raise RuntimeError("ctx is only available once execute_workflow has started")
        return Context(self.engine.store, self.execution.id)

    # ------------------------------------------------------------------
    # Execution
    def _resolve_engine(self, engine: Optional["WorkflowEngine"] = None) -> "WorkflowEngine":
        if engine is not None:
            self.engine = engine
        if self.engine is None:
            from .engine import get_engine

            self.engine = get_engine()
        return self.engine

    async def perform_now(self, engine: Optional["WorkflowEngine"] = None) -> Any:
        """Run one attempt of this job in the current process."""
        engine = self._resolve_engine(engine)
        self.executions += 1
        self.workflow_defined = False
        self.execution = None

        result = await self.perform(*self.arguments, **self.keyword_arguments)

        if self.awaited_by is not None:
            if self.execution is not None and not self.execution.finished:
                logger.info(
                    f"Job {self.job_id} halted its own workflow; not signalling "
                    f"execution {self.awaited_by.execution_id} yet"
                )
            else:
                await engine.signal_completion(self.awaited_by, self.job_id)
        return result

    async def execute_workflow(
        self,
        unique_by: Any,
        define: Optional[Callable[["WorkflowBuilder"], Any]] = None,
        plugins: Optional[Sequence["Plugin"]] = None,
    ) -> "Execution":
        """Run this job's steps durably; see :meth:`WorkflowEngine.execute_workflow`."""
        engine = self._resolve_engine()
        return await engine.execute_workflow(
            self, unique_by=unique_by, define=define, plugins=plugins
        )

    async def enqueue(self, wait: Wait = None, queue: Optional[str] = None) -> JobHandle:
        """Push this job onto the engine's queue."""
        engine = self._resolve_engine()
        return await engine.queue.enqueue(self, wait=wait, queue=queue)

    # ------------------------------------------------------------------
    # Serialization
    @classmethod
    def job_class_path(cls) -> str:
        return object_path(cls)

    def serialize(self) -> SerializedJob:
        return SerializedJob(
            job_class=self.job_class_path(),
            job_id=self.job_id,
            queue_name=self.queue_name,
            arguments=ValueSerializer.serialize(self.arguments),
            keyword_arguments=ValueSerializer.serialize(self.keyword_arguments),
            executions=self.executions,
            awaited_by=self.awaited_by,
        )

    @staticmethod
    def deserialize(data: SerializedJob | dict) -> "Job":
        """Rebuild a job instance, preserving its identity and attempt count."""
        if not isinstance(data, SerializedJob):
            data = SerializedJob.model_validate(data)

        job_class = import_path(data.job_class)
        if not (isinstance(job_class, type) and issubclass(job_class, Job)):
            raise ValueError(f"{data.job_class} is not a durastep Job")

        job = job_class(
            *ValueDeserializer.deserialize(data.arguments),
            **ValueDeserializer.deserialize(data.keyword_arguments),
        )
        job.job_id = data.job_id
        job.executions = data.executions
        job.queue_name = data.queue_name
        job.awaited_by = data.awaited_by
        return job
