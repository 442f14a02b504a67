"""Job queue tests."""

from datetime import timedelta

import pytest

from durastep import Job
from durastep.queues.inmemory import InMemoryJobQueue


class EmailJob(Job):
    queue_name = "mailers"

    async def perform(self, address):
        pass


@pytest.mark.asyncio
async def test_inmemory_queue_basic():
    """Enqueue a job and receive it through subscribe."""
    queue = InMemoryJobQueue()
    job = EmailJob("a@example.com")

    handle = await queue.enqueue(job)
    assert handle.job_id == job.job_id
    assert handle.queue_name == "mailers"

    received = False
    async for raw_job, serialized in queue.subscribe("mailers", lifespan=1):
        assert serialized.job_id == job.job_id
        assert serialized.arguments == ["a@example.com"]
        await queue.ack(raw_job)
        received = True
        break

    assert received


@pytest.mark.asyncio
async def test_queue_override_and_fifo_order():
    queue = InMemoryJobQueue()
    first = EmailJob("first@example.com")
    second = EmailJob("second@example.com")
    await queue.enqueue(first, queue="urgent")
    await queue.enqueue(second, queue="urgent")

    assert (await queue.dequeue("mailers")) is None
    _, received = await queue.dequeue("urgent")
    assert received.job_id == first.job_id
    assert received.queue_name == "urgent"
    _, received = await queue.dequeue("urgent")
    assert received.job_id == second.job_id


@pytest.mark.asyncio
async def test_delayed_jobs_wait_until_due():
    queue = InMemoryJobQueue()
    handle = await queue.enqueue(EmailJob("later@example.com"), wait=timedelta(hours=1))
    assert handle.scheduled_at is not None

    assert await queue.dequeue("mailers") is None
    item = await queue.dequeue("mailers", include_scheduled=True)
    assert item is not None
    assert item[1].scheduled_at == handle.scheduled_at


@pytest.mark.asyncio
async def test_subscribe_stops_after_lifespan():
    queue = InMemoryJobQueue()
    received = [item async for item in queue.subscribe("mailers", lifespan=0.2)]
    assert received == []


@pytest.mark.asyncio
async def test_serialized_job_rebuilds_instance():
    queue = InMemoryJobQueue()
    job = EmailJob("again@example.com")
    job.executions = 2
    await queue.enqueue(job)

    _, serialized = await queue.dequeue("mailers")
    rebuilt = Job.deserialize(serialized)
    assert isinstance(rebuilt, EmailJob)
    assert rebuilt.job_id == job.job_id
    assert rebuilt.arguments == ["again@example.com"]
    assert rebuilt.executions == 2


@pytest.mark.asyncio
async def test_redis_queue_import():
    """RedisJobQueue can be imported (even if redis not available)."""
    try:
        from durastep.queues.redis import RedisJobQueue

        try:
            queue = RedisJobQueue()
            assert queue.host == "localhost"
            assert queue.port == 6379
        except ImportError:
            pass
    except ImportError:
        pytest.fail("RedisJobQueue should be importable")
