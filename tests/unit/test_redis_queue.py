import os
import uuid

import pytest

from durastep import Job

pytest.importorskip("redis")

from durastep.queues.redis import RedisJobQueue  # noqa: E402


class InvoiceJob(Job):
    async def perform(self, invoice_id):
        pass


async def _queue() -> RedisJobQueue:
    queue = RedisJobQueue(host=os.getenv("TEST_REDIS_HOST", "localhost"))
    try:
        await queue.connect()
    except Exception:
        pytest.skip("Redis server not available")
    return queue


async def _cleanup(queue: RedisJobQueue, name: str) -> None:
    await queue._redis.delete(
        queue._ready_key(name), queue._processing_key(name), queue._scheduled_key(name)
    )
    await queue.disconnect()


@pytest.mark.asyncio
async def test_dequeued_job_stays_on_processing_list_until_ack():
    queue = await _queue()
    name = f"invoices-{uuid.uuid4().hex}"
    try:
        job = InvoiceJob(7)
        await queue.enqueue(job, queue=name)

        raw_job, serialized = await queue.dequeue(name)
        assert serialized.job_id == job.job_id
        assert await queue._redis.llen(queue._processing_key(name)) == 1

        await queue.ack(raw_job)
        assert await queue._redis.llen(queue._processing_key(name)) == 0
        assert await queue.dequeue(name) is None
    finally:
        await _cleanup(queue, name)


@pytest.mark.asyncio
async def test_unacked_job_is_restored_after_worker_crash():
    queue = await _queue()
    name = f"invoices-{uuid.uuid4().hex}"
    try:
        job = InvoiceJob(8)
        await queue.enqueue(job, queue=name)
        await queue.dequeue(name)

        # the worker died before acknowledging
        assert await queue.dequeue(name) is None
        assert await queue.restore_unacked(name) == 1

        _, serialized = await queue.dequeue(name)
        assert serialized.job_id == job.job_id
    finally:
        await _cleanup(queue, name)


@pytest.mark.asyncio
async def test_nack_requeues_job():
    queue = await _queue()
    name = f"invoices-{uuid.uuid4().hex}"
    try:
        first = InvoiceJob(1)
        second = InvoiceJob(2)
        await queue.enqueue(first, queue=name)
        await queue.enqueue(second, queue=name)

        raw_job, serialized = await queue.dequeue(name)
        assert serialized.job_id == first.job_id
        await queue.nack(raw_job)

        _, again = await queue.dequeue(name)
        assert again.job_id == first.job_id
        assert await queue._redis.llen(queue._processing_key(name)) == 1
    finally:
        await _cleanup(queue, name)
