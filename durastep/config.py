from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_QUEUE_NAME


class RedisConfig(BaseModel):
    """Configuration for the Redis job queue."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class QueueConfig(BaseModel):
    """Job queue configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class WorkerConfig(BaseModel):
    """Retry policy and subscription settings for workers."""

    queue_name: str = DEFAULT_QUEUE_NAME
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = 1.5


class DurastepConfig(BaseModel):
    """Top-level configuration model."""

    queue: QueueConfig = QueueConfig()
    database_url: Optional[str] = None
    worker: WorkerConfig = WorkerConfig()
    plugins: List[str] = [
        "durastep.plugins.transactional:TransactionalStepPlugin",
        "durastep.plugins.awaits:AwaitsPlugin",
    ]
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> DurastepConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to DURASTEP_CONFIG env
            variable or 'durastep.yaml' in the current directory.
    """

    config_path = path or os.getenv("DURASTEP_CONFIG", "durastep.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = DurastepConfig(**data)
    else:
        config = DurastepConfig()

    env_db_url = os.getenv("DURASTEP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_queue = os.getenv("DURASTEP_QUEUE")
    if env_queue:
        config.queue.backend = env_queue.lower()
    return config
