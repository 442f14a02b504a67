"""Job queue factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import DurastepConfig, load_config
from .base import BaseJobQueue
from .inmemory import InMemoryJobQueue


def get_queue(
    backend: Optional[str] = None, config: Optional[DurastepConfig] = None
) -> BaseJobQueue:
    """Factory function to get the configured job queue."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("DURASTEP_QUEUE")
        or config.queue.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryJobQueue()
    elif backend == "redis":
        from .redis import RedisJobQueue

        redis_conf = config.queue.redis
        return RedisJobQueue(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported queue backend: {backend}")


__all__ = ["BaseJobQueue", "InMemoryJobQueue", "get_queue"]
