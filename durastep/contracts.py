"""Core contracts shared between jobs, queues and the workflow engine."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .constants import DEFAULT_QUEUE_NAME


class AwaitedBy(BaseModel):
    """Parent step waiting on a child job's completion."""

    execution_id: int
    step: str


class SerializedJob(BaseModel):
    """Queue-ready capture of a job's type and constructor arguments."""

    job_class: str
    job_id: str
    queue_name: str = DEFAULT_QUEUE_NAME
    arguments: List[Any] = Field(default_factory=list)
    keyword_arguments: Dict[str, Any] = Field(default_factory=dict)
    executions: int = 0
    awaited_by: Optional[AwaitedBy] = None
    scheduled_at: Optional[datetime] = None

    def to_json(self) -> str:
        """Serialize the job to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "SerializedJob":
        """Deserialize the job from JSON."""
        return cls.model_validate_json(data)


class JobHandle(BaseModel):
    """Returned by a queue after enqueuing a job."""

    job_id: str
    queue_name: str
    scheduled_at: Optional[datetime] = None


class Continue(BaseModel):
    """Advance the workflow to ``next_step``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["continue"] = "continue"
    next_step: str


class Halt(BaseModel):
    """Stop the current attempt; resume at the same step later."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["halt"] = "halt"


class Repeat(BaseModel):
    """Run the current step again within this attempt."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["repeat"] = "repeat"


StepOutcome = Union[Continue, Halt, Repeat]
