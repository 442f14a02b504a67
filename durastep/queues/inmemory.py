"""In-memory job queue for testing."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional, Tuple

from ..contracts import SerializedJob
from .base import BaseJobQueue


class InMemoryJobQueue(BaseJobQueue[Tuple[str, SerializedJob]]):
    """Simple in-process queue for unit tests."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, SerializedJob]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def push(self, job: SerializedJob) -> None:
        """Append the job to its in-memory queue."""
        raw = (job.to_json(), job)
        async with self._lock:
            self._queues[job.queue_name].append(raw)

    async def dequeue(
        self, queue_name: str, include_scheduled: bool = False
    ) -> Optional[Tuple[Tuple[str, SerializedJob], SerializedJob]]:
        now = datetime.now(timezone.utc)
        async with self._lock:
            pending = self._queues[queue_name]
            for raw in list(pending):
                job = raw[1]
                if include_scheduled or job.scheduled_at is None or job.scheduled_at <= now:
                    pending.remove(raw)
                    return raw, SerializedJob.from_json(raw[0])
        return None

    async def ack(self, raw_job: Tuple[str, SerializedJob]) -> None:
        """No-op acknowledgment for in-memory queue."""
        pass

    async def nack(self, raw_job: Tuple[str, SerializedJob], requeue: bool = True) -> None:
        """Put the job back at the head of its queue when ``requeue``."""
        if requeue:
            async with self._lock:
                self._queues[raw_job[1].queue_name].appendleft(raw_job)

    def enqueued_jobs(self, queue_name: Optional[str] = None) -> List[SerializedJob]:
        """Return the jobs waiting on one queue, or on all queues."""
        names = [queue_name] if queue_name else list(self._queues)
        return [raw[1] for name in names for raw in self._queues[name]]
