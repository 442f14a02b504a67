"""Workflow engine: bootstraps executions and drives them step by step."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Optional, Sequence

from .builder import WorkflowBuilder
from .config import DurastepConfig, load_config
from .context import Context
from .contracts import AwaitedBy, JobHandle, SerializedJob
from .errors import (
    ArgumentMismatchError,
    DefinitionMismatchError,
    InvalidWorkflowBlockError,
    RedefiningWorkflowError,
    UndefinedWorkflowBlockError,
)
from .idempotency import idempotency_key_for
from .job import Job
from .persistence import DurableStore, Execution, get_store
from .plugins import (
    AwaitsPlugin,
    Plugin,
    PluginPipeline,
    TransactionalStepPlugin,
    load_plugins,
)
from .plugins.awaits import awaited_jobs_key
from .queues import BaseJobQueue, get_queue
from .runner import StepRunner

_engine_instance: "WorkflowEngine | None" = None


class WorkflowEngine:
    """Owns the store, the queue and the plugin list shared by all jobs."""

    def __init__(
        self,
        store: DurableStore,
        queue: BaseJobQueue,
        plugins: Optional[Sequence[Plugin]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.plugins = (
            list(plugins)
            if plugins is not None
            else [TransactionalStepPlugin(), AwaitsPlugin()]
        )
        self.logger = logger or logging.getLogger(__name__)

    async def execute_workflow(
        self,
        job: Job,
        unique_by: Any,
        define: Optional[Callable[[WorkflowBuilder], Any]] = None,
        plugins: Optional[Sequence[Plugin]] = None,
    ) -> Execution:
        """Run ``job``'s workflow from its recovery point.

        ``define`` receives a :class:`WorkflowBuilder` and declares the steps.
        The execution is keyed by the job class and ``unique_by``; a retried or
        re-enqueued job with the same key resumes the stored execution instead
        of starting over. Returns the execution, finished or halted.
        """
        if job.workflow_defined:
            raise RedefiningWorkflowError()
        job.workflow_defined = True
        if job.engine is None:
            job.engine = self

        _check_define(define)
        pipeline = PluginPipeline(self.plugins if plugins is None else plugins)
        builder = WorkflowBuilder(job, pipeline)
        define(builder)
        definition = builder.define_workflow()

        serialized_job = job.serialize().model_dump(mode="json")
        key = idempotency_key_for(job, unique_by)

        def verify(existing: Execution) -> None:
            expected = _arguments_of(serialized_job)
            found = _arguments_of(existing.serialized_job)
            if found != expected:
                raise ArgumentMismatchError(expected, found)
            if existing.definition != definition:
                raise DefinitionMismatchError(definition, existing.definition)

        execution, created = await self.store.bootstrap_execution(
            key, serialized_job, definition, builder.first_step, verify
        )
        if created:
            self.logger.info(
                f"Created execution {execution.id} for {job.job_class_path()} "
                f"at step {execution.recover_to}"
            )
        else:
            self.logger.info(
                f"Resuming execution {execution.id} for {job.job_class_path()} "
                f"at step {execution.recover_to}"
            )

        job.execution = execution
        runner = StepRunner(
            job,
            execution,
            self.store,
            self.queue,
            builder.handlers,
            pipeline,
            logger=self.logger,
        )
        return await runner.run()

    async def enqueue_execution(self, execution: Execution) -> JobHandle:
        """Re-enqueue the job that owns ``execution`` so it can resume."""
        job = Job.deserialize(execution.serialized_job)
        job.engine = self
        handle = await self.queue.enqueue(job)
        self.logger.info(f"Enqueued job {job.job_id} to resume execution {execution.id}")
        return handle

    async def signal_completion(self, awaited_by: AwaitedBy, job_id: str) -> bool:
        """Mark an awaited child as done; resume the parent once all are.

        Each child writes its own marker before reading its siblings', so of
        several children finishing at once at least one sees every marker.
        Returns ``True`` when the parent was re-enqueued.
        """
        execution = await self.store.get_execution(awaited_by.execution_id)
        if execution is None:
            self.logger.warning(
                f"Job {job_id} finished but awaiting execution "
                f"{awaited_by.execution_id} no longer exists"
            )
            return False

        ctx = Context(self.store, execution.id)
        await ctx.put(job_id, True)

        children = await ctx.read(awaited_jobs_key(awaited_by.step), [])
        sibling_ids = [SerializedJob.from_json(child).job_id for child in children]
        markers = await ctx.values_for(*sibling_ids)
        outstanding = [sibling for sibling in sibling_ids if not markers.get(sibling)]
        if outstanding:
            self.logger.info(
                f"Execution {execution.id} still awaits {len(outstanding)} jobs "
                f"at step {awaited_by.step}"
            )
            return False

        if execution.finished:
            return False

        await self.enqueue_execution(execution)
        return True


def _arguments_of(serialized_job: dict) -> dict:
    return {
        "arguments": serialized_job.get("arguments", []),
        "keyword_arguments": serialized_job.get("keyword_arguments", {}),
    }


def _check_define(define: Any) -> None:
    if define is None:
        raise UndefinedWorkflowBlockError()
    if not callable(define):
        raise InvalidWorkflowBlockError(f"got {type(define).__name__}")
    try:
        signature = inspect.signature(define)
    except (TypeError, ValueError):
        # builtins and some C callables have no introspectable signature
        return
    try:
        signature.bind(object())
    except TypeError as e:
        raise InvalidWorkflowBlockError(str(e)) from e


def get_engine(config: Optional[DurastepConfig] = None) -> WorkflowEngine:
    """Return the process-wide engine, building it from configuration."""
    global _engine_instance
    if _engine_instance is not None and config is None:
        return _engine_instance

    config = config or load_config()
    _engine_instance = WorkflowEngine(
        store=get_store(config=config),
        queue=get_queue(config=config),
        plugins=load_plugins(config.plugins),
    )
    return _engine_instance


def set_engine(engine: Optional[WorkflowEngine]) -> None:
    """Install (or with ``None`` reset) the process-wide engine."""
    global _engine_instance
    _engine_instance = engine
