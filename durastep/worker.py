"""Queue worker: delivers jobs to ``perform_now`` and applies the retry policy."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .config import load_config
from .contracts import SerializedJob
from .engine import WorkflowEngine, get_engine
from .job import Job
from .queues import BaseJobQueue
from .utils.retry import retry_delay, should_retry

logger = logging.getLogger(__name__)


class Worker:
    """Consumes one queue and performs the jobs found on it."""

    def __init__(
        self,
        queue: Optional[BaseJobQueue] = None,
        engine: Optional[WorkflowEngine] = None,
        queue_name: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ) -> None:
        worker_config = load_config().worker
        self.engine = engine or get_engine()
        self.queue = queue or self.engine.queue
        self.queue_name = queue_name or worker_config.queue_name
        self.max_attempts = max_attempts or worker_config.max_attempts
        self.backoff_base = backoff_base or worker_config.backoff_base

    async def start(
        self, lifespan: Optional[float] = None, restore_unacked: bool = False
    ) -> None:
        """Start listening for jobs on the worker's queue.

        With ``restore_unacked``, jobs a crashed worker took but never
        acknowledged are put back on the queue first.
        """
        if restore_unacked:
            restored = await self.queue.restore_unacked(self.queue_name)
            if restored:
                logger.warning(
                    f"Restored {restored} unacknowledged jobs to queue {self.queue_name}"
                )
        logger.info(f"Worker listening on queue {self.queue_name}")
        async for raw_job, serialized in self.queue.subscribe(
            self.queue_name, lifespan=lifespan
        ):
            await self._deliver(raw_job, serialized)

    async def drain(self, include_scheduled: bool = True, max_jobs: int = 1000) -> int:
        """Perform jobs until the queue is empty; returns how many ran.

        Delayed jobs are handed out immediately unless ``include_scheduled`` is
        false, which makes this the usual way to run a workflow in tests.
        """
        processed = 0
        while processed < max_jobs:
            item = await self.queue.dequeue(
                self.queue_name, include_scheduled=include_scheduled
            )
            if item is None:
                break
            await self._deliver(*item)
            processed += 1
        return processed

    async def _deliver(self, raw_job: Any, serialized: SerializedJob) -> None:
        try:
            await self.process(serialized)
        except BaseException:
            # interrupted mid-perform: hand the job back instead of losing it
            await self.queue.nack(raw_job, requeue=True)
            raise
        await self.queue.ack(raw_job)

    async def process(self, serialized: SerializedJob) -> bool:
        """Run one delivery of a job; returns ``True`` when it succeeded.

        A job whose class can no longer be imported is logged and discarded.
        """
        try:
            job = Job.deserialize(serialized)
        except Exception as e:
            logger.error(
                f"Discarding job {serialized.job_id}: cannot rebuild {serialized.job_class}: {e!r}"
            )
            return False

        try:
            await job.perform_now(self.engine)
        except Exception as e:
            await self._handle_failure(job, e)
            return False

        logger.info(f"Job {job.job_id} ({serialized.job_class}) completed")
        return True

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        if should_retry(job.executions, self.max_attempts):
            wait = retry_delay(job.executions, base=self.backoff_base)
            await self.queue.enqueue(job, wait=wait)
            logger.warning(
                f"Job {job.job_id} failed on attempt {job.executions}: {error!r}; "
                f"retrying in {wait.total_seconds():.1f}s"
            )
            return

        logger.error(
            f"Job {job.job_id} failed after {job.executions} attempts; discarding: {error!r}"
        )
