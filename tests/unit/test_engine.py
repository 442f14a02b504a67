"""Tests for workflow engine entry points and the job adapter."""

import pytest

from durastep import Job
from durastep.config import DurastepConfig
from durastep.engine import WorkflowEngine, get_engine
from durastep.errors import (
    InvalidWorkflowBlockError,
    UndefinedStepError,
    UndefinedWorkflowBlockError,
)
from durastep.persistence import InMemoryStore
from durastep.plugins import AwaitsPlugin, TransactionalStepPlugin
from durastep.queues import InMemoryJobQueue


class NoDefineJob(Job):
    async def perform(self):
        await self.execute_workflow(unique_by="none")


class BadDefineJob(Job):
    async def perform(self, define):
        await self.execute_workflow(unique_by="bad", define=define)


class RenamedStepJob(Job):
    async def perform(self):
        await self.execute_workflow(unique_by="renamed", define=lambda w: w.step("only"))

    def only(self, run):
        pass


class PlainJob(Job):
    async def perform(self, value):
        return value * 2


@pytest.mark.asyncio
async def test_missing_define_raises(engine):
    with pytest.raises(UndefinedWorkflowBlockError):
        await NoDefineJob().perform_now(engine)


@pytest.mark.asyncio
async def test_define_must_accept_builder(engine):
    with pytest.raises(InvalidWorkflowBlockError):
        await BadDefineJob(lambda: None).perform_now(engine)

    with pytest.raises(InvalidWorkflowBlockError):
        await BadDefineJob(lambda a, b: None).perform_now(engine)


@pytest.mark.asyncio
async def test_define_must_be_callable(engine):
    job = BadDefineJob("not callable")
    with pytest.raises(InvalidWorkflowBlockError):
        await job.perform_now(engine)


@pytest.mark.asyncio
async def test_unknown_recovery_point_raises(engine, store):
    await RenamedStepJob().perform_now(engine)
    execution = (await store.list_executions())[0]
    await store.update_recover_to(execution.id, "removed_step")

    with pytest.raises(UndefinedStepError) as excinfo:
        await RenamedStepJob().perform_now(engine)
    assert excinfo.value.step == "removed_step"


@pytest.mark.asyncio
async def test_jobs_without_workflow_just_perform(engine, store):
    assert await PlainJob(21).perform_now(engine) == 42
    assert await store.list_executions() == []


@pytest.mark.asyncio
async def test_enqueue_execution_rebuilds_owning_job(engine, store, queue):
    await RenamedStepJob().perform_now(engine)
    execution = (await store.list_executions())[0]

    handle = await engine.enqueue_execution(execution)
    pending = queue.enqueued_jobs()
    assert [job.job_id for job in pending] == [handle.job_id]
    assert pending[0].job_class == RenamedStepJob.job_class_path()


def test_engine_defaults_to_builtin_plugins():
    engine = WorkflowEngine(store=InMemoryStore(), queue=InMemoryJobQueue())
    assert [type(plugin) for plugin in engine.plugins] == [TransactionalStepPlugin, AwaitsPlugin]
    assert WorkflowEngine(InMemoryStore(), InMemoryJobQueue(), plugins=[]).plugins == []


def test_get_engine_builds_from_config():
    engine = get_engine(DurastepConfig(plugins=[]))
    assert engine.plugins == []
    assert isinstance(engine.store, InMemoryStore)
    assert isinstance(engine.queue, InMemoryJobQueue)
    assert get_engine() is engine


class ContextReadingJob(Job):
    seen: list = []

    async def perform(self):
        with pytest.raises(RuntimeError):
            self.ctx
        await self.execute_workflow(
            unique_by="ctx", define=lambda w: w.step("write").step("read")
        )

    async def write(self, run):
        await run.ctx.put("greeting", "hello")

    async def read(self, run):
        ContextReadingJob.seen.append(await self.ctx["greeting"])


@pytest.mark.asyncio
async def test_job_ctx_reads_execution_context(engine):
    ContextReadingJob.seen = []
    await ContextReadingJob().perform_now(engine)
    assert ContextReadingJob.seen == ["hello"]
