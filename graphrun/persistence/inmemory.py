"""In-memory implementation of the execution repository."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from ..errors import ExecutionConflictError, NotFoundError
from .models import Checkpoint, ExecutionRecord, ExecutionStatus, utcnow
from .repository import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, ExecutionRecord] = {}
        self._checkpoints: Dict[str, List[Checkpoint]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    def _apply(self, record: ExecutionRecord, expected_version: Optional[int]) -> int:
        stored = self._executions.get(record.id)
        if stored is None:
            raise NotFoundError("Execution", record.id)
        if expected_version is not None and stored.version != expected_version:
            raise ExecutionConflictError(record.id, expected_version, stored.version)
        version = stored.version + 1
        self._executions[record.id] = record.model_copy(
            deep=True,
            update={"checkpoints": [], "version": version, "updated_at": utcnow()},
        )
        return version

    # ------------------------------------------------------------------
    async def create_execution(self, record: ExecutionRecord) -> None:
        async with self._lock:
            self._executions[record.id] = record.model_copy(
                deep=True, update={"checkpoints": []}
            )
            self._checkpoints[record.id] = []

    async def save_execution(
        self, record: ExecutionRecord, expected_version: Optional[int] = None
    ) -> int:
        async with self._lock:
            return self._apply(record, expected_version)

    async def append_checkpoint(
        self, record: ExecutionRecord, checkpoint: Checkpoint
    ) -> int:
        async with self._lock:
            version = self._apply(record, None)
            self._checkpoints[record.id].append(checkpoint.model_copy(deep=True))
            return version

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        stored = self._executions.get(execution_id)
        if stored is None:
            return None
        return stored.model_copy(
            deep=True,
            update={"checkpoints": [c.model_copy(deep=True) for c in self._checkpoints[execution_id]]},
        )

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        return [
            rec.model_copy(deep=True)
            for rec in self._executions.values()
            if (workflow_id is None or rec.workflow_id == workflow_id)
            and (status is None or rec.status == status)
        ]

    async def list_checkpoints(
        self, execution_id: str, after_sequence: int = 0, limit: Optional[int] = None
    ) -> list[Checkpoint]:
        page = [
            c.model_copy(deep=True)
            for c in self._checkpoints.get(execution_id, [])
            if c.sequence > after_sequence
        ]
        return page[:limit] if limit is not None else page
