"""Idempotency keys identifying "the same logical job"."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any

from .serialization import canonical_json

if TYPE_CHECKING:
    from .job import Job


def compute_idempotency_key(job_class: str, unique_by: Any) -> str:
    """SHA-256 over the job type and the canonical JSON of ``unique_by``.

    >>> compute_idempotency_key("app.jobs:Charge", {"order": 1}) == \\
    ...     compute_idempotency_key("app.jobs:Charge", {"order": 1})
    True
    """
    digest = hashlib.sha256()
    digest.update(job_class.encode("utf-8"))
    digest.update(b"\x00")
    digest.update(canonical_json(unique_by).encode("utf-8"))
    return digest.hexdigest()


def idempotency_key_for(job: "Job", unique_by: Any) -> str:
    return compute_idempotency_key(job.job_class_path(), unique_by)
