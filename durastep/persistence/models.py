"""Data models for persisted workflow state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..constants import FINISHED_RECOVERY_POINT


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Execution(BaseModel):
    """One durable workflow run, unique per idempotency key."""

    id: int
    idempotency_key: str
    serialized_job: dict[str, Any]
    definition: dict[str, Any]
    recover_to: str
    last_run_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def finished(self) -> bool:
        return self.recover_to == FINISHED_RECOVERY_POINT

    def defines(self, step: str) -> bool:
        return step in self.definition

    def definition_for(self, step: str) -> dict[str, Any]:
        return self.definition[step]


class Entry(BaseModel):
    """Append-only record of one step state transition."""

    id: Optional[int] = None
    execution_id: int
    step: str
    action: str
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)


class Value(BaseModel):
    """Context entry persisted for an execution."""

    execution_id: int
    key: str
    value: Any = None
