from __future__ import annotations

import random
from datetime import timedelta


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter, in seconds."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


def retry_delay(attempt: int, base: float = 1.5, jitter: float = 0.5) -> timedelta:
    """Backoff before re-delivering a job that failed ``attempt`` times."""
    return timedelta(seconds=compute_backoff(attempt, base=base, jitter=jitter))


def should_retry(attempts: int, max_attempts: int) -> bool:
    """Return ``True`` while a failed job has attempts left."""
    return attempts < max_attempts
