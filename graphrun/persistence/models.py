"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Lifecycle status of a workflow execution."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PAUSED = "PAUSED"


class Checkpoint(BaseModel):
    """Immutable snapshot taken after a node succeeded or failed."""

    id: str
    execution_id: str
    sequence: int
    node_id: str
    node_name: str
    step_number: int
    context: dict[str, Any] = Field(default_factory=dict)
    branch: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def failed(self) -> bool:
        return self.error is not None


class ExecutionRecord(BaseModel):
    """Persisted execution record read by resume callers and status viewers."""

    id: str
    workflow_id: str
    user_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    initial_context: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    current_step: int = 0
    total_steps: int = 0
    error: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
