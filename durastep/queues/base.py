"""Base job queue interface for durastep."""

from __future__ import annotations

import abc
import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, AsyncIterator, Generic, Optional, Tuple, TypeVar, Union

from ..contracts import JobHandle, SerializedJob

if TYPE_CHECKING:
    from ..job import Job

RawJobT = TypeVar("RawJobT")

Wait = Union[float, int, timedelta, None]


def scheduled_time(wait: Wait) -> Optional[datetime]:
    """Turn a ``wait`` (seconds or timedelta) into an absolute UTC time."""
    if wait is None:
        return None
    if not isinstance(wait, timedelta):
        wait = timedelta(seconds=wait)
    return datetime.now(timezone.utc) + wait


class BaseJobQueue(Generic[RawJobT], metaclass=abc.ABCMeta):
    """Abstract base for job queue backends."""

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    async def enqueue(
        self, job: "Job", wait: Wait = None, queue: Optional[str] = None
    ) -> JobHandle:
        """Serialize ``job`` and push it, optionally delayed by ``wait``."""
        serialized = job.serialize()
        serialized = serialized.model_copy(
            update={
                "queue_name": queue or serialized.queue_name,
                "scheduled_at": scheduled_time(wait),
            }
        )
        await self.push(serialized)
        return JobHandle(
            job_id=serialized.job_id,
            queue_name=serialized.queue_name,
            scheduled_at=serialized.scheduled_at,
        )

    @abc.abstractmethod
    async def push(self, job: SerializedJob) -> None:
        """Store a serialized job on its queue."""
        raise NotImplementedError

    @abc.abstractmethod
    async def dequeue(
        self, queue_name: str, include_scheduled: bool = False
    ) -> Optional[Tuple[RawJobT, SerializedJob]]:
        """Pop the next due job, or ``None`` when the queue is empty.

        Args:
            queue_name: Queue to pop from.
            include_scheduled: Also hand out jobs whose ``scheduled_at`` lies in
                the future.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_job: RawJobT) -> None:
        """Acknowledge successful processing."""
        raise NotImplementedError

    @abc.abstractmethod
    async def nack(self, raw_job: RawJobT, requeue: bool = True) -> None:
        """Give up on a dequeued job, putting it back first when ``requeue``."""
        raise NotImplementedError

    async def restore_unacked(self, queue_name: str) -> int:
        """Requeue jobs dequeued but never acknowledged; returns how many.

        Backends that lose nothing on a worker crash have nothing to restore.
        """
        return 0

    async def subscribe(
        self, queue_name: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawJobT, SerializedJob]]:
        """Yield raw and serialized job pairs as they become due.

        Args:
            queue_name: The queue to subscribe to
            lifespan: Maximum time in seconds to keep polling. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            item = await self.dequeue(queue_name)
            if item is not None:
                yield item
                continue

            await asyncio.sleep(0.1)
