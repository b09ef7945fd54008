"""Execution state management with durable checkpoints.

An :class:`ExecutionState` is the mutable in-memory view of one workflow
execution. The live context and counters change in memory; every checkpoint,
and every status write, persists the whole record through an
:class:`~graphrun.persistence.ExecutionRepository` in a single call.

Usage::

    state = await ExecutionState.create(workflow_id, user_id, {"topic": "x"})
    await state.mark_running()
    state.set_context(new_context)
    state.increment_step()
    await state.create_checkpoint(node.id, node.display_name)
    await state.mark_completed()
"""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

from .contracts import ResumePoint
from .errors import InvalidStatusTransition, NotFoundError, get_error_message
from .persistence import ExecutionRepository, get_repository
from .persistence.models import Checkpoint, ExecutionRecord, ExecutionStatus, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.RUNNING: frozenset(
        {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.PAUSED}
    ),
    ExecutionStatus.PAUSED: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.FAILED: frozenset({ExecutionStatus.RUNNING}),
    ExecutionStatus.COMPLETED: frozenset(),
}


class ExecutionState:
    """Durable record of one in-flight or finished workflow execution."""

    def __init__(
        self,
        record: ExecutionRecord,
        repository: ExecutionRepository,
    ) -> None:
        self._record = record.model_copy(deep=True, update={"checkpoints": []})
        self._checkpoints: list[Checkpoint] = list(record.checkpoints)
        self._repository = repository

    # ------------------------------------------------------------------
    # Factories

    @classmethod
    async def create(
        cls,
        workflow_id: str,
        user_id: str,
        initial_context: Optional[Dict[str, Any]] = None,
        total_steps: int = 0,
        repository: Optional[ExecutionRepository] = None,
    ) -> "ExecutionState":
        """Allocate and persist a fresh ``PENDING`` execution."""
        repository = repository or get_repository()
        initial_context = copy.deepcopy(initial_context or {})
        record = ExecutionRecord(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            user_id=user_id,
            status=ExecutionStatus.PENDING,
            initial_context=initial_context,
            context=copy.deepcopy(initial_context),
            total_steps=total_steps,
        )
        await repository.create_execution(record)
        logger.debug(f"Created execution {record.id} for workflow {workflow_id}")
        return cls(record, repository)

    @classmethod
    async def resume(
        cls, execution_id: str, repository: Optional[ExecutionRepository] = None
    ) -> "ExecutionState":
        """Load the most recently persisted state of ``execution_id``.

        Raises:
            NotFoundError: the execution id is unknown.
        """
        repository = repository or get_repository()
        record = await repository.get_execution(execution_id)
        if record is None:
            raise NotFoundError("Execution", execution_id)
        return cls(record, repository)

    # ------------------------------------------------------------------
    # Accessors

    @property
    def execution_id(self) -> str:
        return self._record.id

    @property
    def workflow_id(self) -> str:
        return self._record.workflow_id

    @property
    def user_id(self) -> str:
        return self._record.user_id

    @property
    def status(self) -> ExecutionStatus:
        return self._record.status

    @property
    def current_step(self) -> int:
        return self._record.current_step

    @property
    def total_steps(self) -> int:
        return self._record.total_steps

    @property
    def version(self) -> int:
        return self._record.version

    @property
    def error(self) -> Optional[str]:
        return self._record.error

    def get_context(self) -> Dict[str, Any]:
        """Deep copy of the live context."""
        return copy.deepcopy(self._record.context)

    def get_checkpoints(self) -> Tuple[Checkpoint, ...]:
        return tuple(self._checkpoints)

    def get_last_checkpoint(self) -> Optional[Checkpoint]:
        return self._checkpoints[-1] if self._checkpoints else None

    def checkpointed_node_ids(self) -> set[str]:
        """Ids of nodes that already ran in this execution, failed or not."""
        return {c.node_id for c in self._checkpoints}

    # ------------------------------------------------------------------
    # In-memory mutations

    def update_context(self, updates: Dict[str, Any]) -> None:
        """Merge ``updates`` into the live context."""
        self._record.context = {**self._record.context, **copy.deepcopy(updates)}

    def set_context(self, context: Dict[str, Any]) -> None:
        """Replace the live context."""
        self._record.context = copy.deepcopy(context)

    def increment_step(self) -> None:
        self._record.current_step += 1

    def set_status(self, status: ExecutionStatus) -> None:
        """Change status in memory, enforcing the execution lifecycle.

        Raises:
            InvalidStatusTransition: the lifecycle does not allow the change.
        """
        current = self._record.status
        if status == current:
            return
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransition(self.execution_id, current.value, status.value)
        self._record.status = status

    # ------------------------------------------------------------------
    # Checkpointing

    def _new_checkpoint(
        self, node_id: str, node_name: str, branch: Optional[str], error: Optional[str]
    ) -> Checkpoint:
        return Checkpoint(
            id=str(uuid.uuid4()),
            execution_id=self.execution_id,
            sequence=len(self._checkpoints) + 1,
            node_id=node_id,
            node_name=node_name,
            step_number=self._record.current_step,
            context=copy.deepcopy(self._record.context),
            branch=branch,
            timestamp=utcnow(),
            error=error,
        )

    async def _append(self, checkpoint: Checkpoint) -> Checkpoint:
        self._record.version = await self._repository.append_checkpoint(
            self.to_record(include_checkpoints=False), checkpoint
        )
        self._checkpoints.append(checkpoint)
        return checkpoint

    async def create_checkpoint(
        self, node_id: str, node_name: str, branch: Optional[str] = None
    ) -> Checkpoint:
        """Append a checkpoint of the current context and persist the state.

        If the write does not complete (an error, or the run being cancelled
        while it is awaited), ``current_step`` is reset to the number of
        successful checkpoints already in the log before the error propagates.
        """
        checkpoint = self._new_checkpoint(node_id, node_name, branch, None)
        try:
            await self._append(checkpoint)
        except BaseException:
            self._record.current_step = sum(1 for c in self._checkpoints if not c.failed)
            raise
        logger.debug(
            f"Checkpoint {checkpoint.sequence} (step {checkpoint.step_number}) "
            f"for node {node_id} in execution {self.execution_id}"
        )
        return checkpoint

    async def create_error_checkpoint(
        self, node_id: str, node_name: str, error: BaseException | str
    ) -> Checkpoint:
        """Append a checkpoint recording ``error`` and force status ``FAILED``."""
        message = error if isinstance(error, str) else get_error_message(error)
        checkpoint = self._new_checkpoint(node_id, node_name, None, message)
        self.set_status(ExecutionStatus.FAILED)
        self._record.error = message
        return await self._append(checkpoint)

    async def save(self, expected_version: Optional[int] = None) -> None:
        """Persist status, context and counters."""
        self._record.version = await self._repository.save_execution(
            self.to_record(include_checkpoints=False), expected_version
        )

    async def mark_running(self) -> None:
        """Claim the execution for this interpreter and move it to ``RUNNING``.

        The write is conditional on the version this state was loaded at, so
        two interpreters resuming the same execution cannot both succeed.

        Raises:
            ExecutionConflictError: another interpreter claimed it first.
        """
        claimed_version = self._record.version
        self.set_status(ExecutionStatus.RUNNING)
        self._record.error = None
        await self.save(expected_version=claimed_version)

    async def mark_completed(self) -> None:
        self.set_status(ExecutionStatus.COMPLETED)
        self._record.completed_at = utcnow()
        await self.save()

    async def mark_failed(self, error: BaseException | str) -> None:
        self.set_status(ExecutionStatus.FAILED)
        self._record.error = error if isinstance(error, str) else get_error_message(error)
        await self.save()

    # ------------------------------------------------------------------
    # Resume helpers

    def can_resume(self) -> bool:
        return self.status == ExecutionStatus.PAUSED or (
            self.status == ExecutionStatus.FAILED and bool(self._checkpoints)
        )

    def get_resume_point(self) -> Optional[ResumePoint]:
        last = self.get_last_checkpoint()
        if last is None:
            return None
        return ResumePoint(
            node_id=last.node_id,
            step_number=last.step_number,
            branch=last.branch,
            failed=last.failed,
        )

    def to_record(self, include_checkpoints: bool = True) -> ExecutionRecord:
        """Serializable snapshot of the whole state."""
        return self._record.model_copy(
            deep=True,
            update={"checkpoints": list(self._checkpoints) if include_checkpoints else []},
        )

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return (
            f"ExecutionState(id={self.execution_id!r}, status={self.status.value}, "
            f"step={self.current_step}/{self.total_steps}, "
            f"checkpoints={len(self._checkpoints)})"
        )
