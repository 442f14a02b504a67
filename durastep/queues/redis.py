"""Redis job queue for cross-process delivery."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import SerializedJob
from .base import BaseJobQueue

logger = logging.getLogger(__name__)

# queue name and the job JSON exactly as stored
RawRedisJob = Tuple[str, str]


class RedisJobQueue(BaseJobQueue[RawRedisJob]):
    """Redis-backed queue: a list per queue plus a sorted set of delayed jobs.

    Dequeuing moves a job onto the queue's processing list in one command; it
    leaves that list only when acknowledged, so jobs taken by a worker that
    dies mid-perform can be restored with :meth:`restore_unacked`.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisJobQueue")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _ready_key(queue_name: str) -> str:
        return f"durastep:{queue_name}"

    @staticmethod
    def _processing_key(queue_name: str) -> str:
        return f"durastep:{queue_name}:processing"

    @staticmethod
    def _scheduled_key(queue_name: str) -> str:
        return f"durastep:{queue_name}:scheduled"

    async def push(self, job: SerializedJob) -> None:
        """Push to the ready list, or the scheduled set when delayed."""
        if not self._redis:
            await self.connect()

        job_json = job.to_json()
        if job.scheduled_at is not None:
            await self._redis.zadd(
                self._scheduled_key(job.queue_name),
                {job_json: job.scheduled_at.timestamp()},
            )
        else:
            await self._redis.lpush(self._ready_key(job.queue_name), job_json)

    async def _promote_due(self, queue_name: str, include_scheduled: bool) -> None:
        upper = "+inf" if include_scheduled else datetime.now(timezone.utc).timestamp()
        due = await self._redis.zrangebyscore(
            self._scheduled_key(queue_name), "-inf", upper
        )
        for job_json in due:
            # only the worker that removes the member may promote it
            if await self._redis.zrem(self._scheduled_key(queue_name), job_json):
                await self._redis.lpush(self._ready_key(queue_name), job_json)

    async def dequeue(
        self, queue_name: str, include_scheduled: bool = False
    ) -> Optional[Tuple[RawRedisJob, SerializedJob]]:
        if not self._redis:
            await self.connect()

        await self._promote_due(queue_name, include_scheduled)
        job_json = await self._redis.lmove(
            self._ready_key(queue_name), self._processing_key(queue_name), "RIGHT", "LEFT"
        )
        if job_json is None:
            return None
        try:
            return (queue_name, job_json), SerializedJob.model_validate(json.loads(job_json))
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Dropping unparsable job from queue {queue_name}: {e}")
            await self._redis.lrem(self._processing_key(queue_name), 1, job_json)
            return None

    async def ack(self, raw_job: RawRedisJob) -> None:
        """Remove the job from the processing list."""
        queue_name, job_json = raw_job
        await self._redis.lrem(self._processing_key(queue_name), 1, job_json)

    async def nack(self, raw_job: RawRedisJob, requeue: bool = True) -> None:
        """Remove the job from the processing list, handing it out next when ``requeue``."""
        queue_name, job_json = raw_job
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing_key(queue_name), 1, job_json)
            if requeue:
                pipe.rpush(self._ready_key(queue_name), job_json)
            await pipe.execute()

    async def restore_unacked(self, queue_name: str) -> int:
        """Move every job left on the processing list back onto the queue.

        Run it while no other worker consumes ``queue_name``: a job still being
        performed elsewhere would be delivered twice.
        """
        if not self._redis:
            await self.connect()

        restored = 0
        while await self._redis.lmove(
            self._processing_key(queue_name), self._ready_key(queue_name), "LEFT", "RIGHT"
        ):
            restored += 1
        return restored
