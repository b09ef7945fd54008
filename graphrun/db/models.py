from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class ExecutionRow(SQLModel, table=True):
    """Represents one workflow execution."""

    __tablename__ = "executions"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(index=True)
    user_id: str
    status: str = Field(default="PENDING", index=True)
    initial_context: dict = Field(sa_column=Column(JSON))
    context: dict = Field(sa_column=Column(JSON))
    current_step: int = 0
    total_steps: int = 0
    error: Optional[str] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class CheckpointRow(SQLModel, table=True):
    """Append-only checkpoint log entry."""

    __tablename__ = "checkpoints"
    __table_args__ = (UniqueConstraint("execution_id", "sequence"),)

    id: str = Field(primary_key=True)
    execution_id: str = Field(foreign_key="executions.id", index=True)
    sequence: int
    node_id: str
    node_name: str
    step_number: int
    context: dict = Field(sa_column=Column(JSON))
    branch: Optional[str] = None
    timestamp: datetime
    error: Optional[str] = None
