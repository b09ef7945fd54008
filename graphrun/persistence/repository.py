"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import Checkpoint, ExecutionRecord, ExecutionStatus


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends.

    ``save_execution`` and ``append_checkpoint`` return the record version
    after the write. Checkpoints are stored as an append-only log keyed by
    ``(execution_id, sequence)``; ``append_checkpoint`` writes the checkpoint
    and the execution row in a single transaction.
    """

    async def create_execution(self, record: ExecutionRecord) -> None:
        """Persist a new execution record."""

    async def save_execution(
        self, record: ExecutionRecord, expected_version: Optional[int] = None
    ) -> int:
        """Persist status, context and counters of ``record``.

        When ``expected_version`` is given the write only succeeds if the
        stored version still matches, otherwise ``ExecutionConflictError``
        is raised.
        """

    async def append_checkpoint(
        self, record: ExecutionRecord, checkpoint: Checkpoint
    ) -> int:
        """Append ``checkpoint`` and persist ``record`` atomically."""

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        """Retrieve the execution with its full checkpoint history."""

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        """Return persisted executions without their checkpoints."""

    async def list_checkpoints(
        self, execution_id: str, after_sequence: int = 0, limit: Optional[int] = None
    ) -> list[Checkpoint]:
        """Return a page of checkpoints ordered by sequence."""
