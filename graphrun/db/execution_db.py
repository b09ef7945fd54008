from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..errors import ExecutionConflictError, NotFoundError
from ..persistence.models import Checkpoint, ExecutionRecord, ExecutionStatus, utcnow
from ..persistence.repository import ExecutionRepository
from .models import CheckpointRow, ExecutionRow


class ExecutionDB(ExecutionRepository):
    """Async SQLAlchemy/SQLModel execution repository.

    Accepts any async SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///runs.db`` or
    ``postgresql+asyncpg://user@host/db``. Call :meth:`init_db` once before
    use to create the tables.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    @staticmethod
    def _to_record(row: ExecutionRow, checkpoints: list[Checkpoint]) -> ExecutionRecord:
        return ExecutionRecord(
            id=row.id,
            workflow_id=row.workflow_id,
            user_id=row.user_id,
            status=ExecutionStatus(row.status),
            initial_context=row.initial_context or {},
            context=row.context or {},
            checkpoints=checkpoints,
            current_step=row.current_step,
            total_steps=row.total_steps,
            error=row.error,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
            completed_at=row.completed_at,
        )

    @staticmethod
    def _to_checkpoint(row: CheckpointRow) -> Checkpoint:
        return Checkpoint(
            id=row.id,
            execution_id=row.execution_id,
            sequence=row.sequence,
            node_id=row.node_id,
            node_name=row.node_name,
            step_number=row.step_number,
            context=row.context or {},
            branch=row.branch,
            timestamp=row.timestamp,
            error=row.error,
        )

    async def _update(
        self,
        session: AsyncSession,
        record: ExecutionRecord,
        expected_version: Optional[int],
    ) -> int:
        result = await session.execute(
            select(ExecutionRow).where(ExecutionRow.id == record.id).with_for_update()
        )
        row = result.scalars().first()
        if row is None:
            raise NotFoundError("Execution", record.id)
        if expected_version is not None and row.version != expected_version:
            raise ExecutionConflictError(record.id, expected_version, row.version)
        row.status = record.status.value
        row.context = dict(record.context)
        row.current_step = record.current_step
        row.total_steps = record.total_steps
        row.error = record.error
        row.version += 1
        row.updated_at = utcnow()
        row.completed_at = record.completed_at
        session.add(row)
        return row.version

    # ------------------------------------------------------------------
    async def create_execution(self, record: ExecutionRecord) -> None:
        row = ExecutionRow(
            id=record.id,
            workflow_id=record.workflow_id,
            user_id=record.user_id,
            status=record.status.value,
            initial_context=dict(record.initial_context),
            context=dict(record.context),
            current_step=record.current_step,
            total_steps=record.total_steps,
            error=record.error,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()

    async def save_execution(
        self, record: ExecutionRecord, expected_version: Optional[int] = None
    ) -> int:
        async with self.session() as session:
            version = await self._update(session, record, expected_version)
            await session.commit()
        return version

    async def append_checkpoint(
        self, record: ExecutionRecord, checkpoint: Checkpoint
    ) -> int:
        async with self.session() as session:
            session.add(
                CheckpointRow(
                    id=checkpoint.id,
                    execution_id=checkpoint.execution_id,
                    sequence=checkpoint.sequence,
                    node_id=checkpoint.node_id,
                    node_name=checkpoint.node_name,
                    step_number=checkpoint.step_number,
                    context=dict(checkpoint.context),
                    branch=checkpoint.branch,
                    timestamp=checkpoint.timestamp,
                    error=checkpoint.error,
                )
            )
            version = await self._update(session, record, None)
            await session.commit()
        return version

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        async with self.session() as session:
            row = await session.get(ExecutionRow, execution_id)
            if row is None:
                return None
        return self._to_record(row, await self.list_checkpoints(execution_id))

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        query = select(ExecutionRow)
        if workflow_id is not None:
            query = query.where(ExecutionRow.workflow_id == workflow_id)
        if status is not None:
            query = query.where(ExecutionRow.status == status.value)
        async with self.session() as session:
            result = await session.execute(query.order_by(ExecutionRow.created_at))
            rows = result.scalars().all()
        return [self._to_record(row, []) for row in rows]

    async def list_checkpoints(
        self, execution_id: str, after_sequence: int = 0, limit: Optional[int] = None
    ) -> list[Checkpoint]:
        query = (
            select(CheckpointRow)
            .where(CheckpointRow.execution_id == execution_id)
            .where(CheckpointRow.sequence > after_sequence)
            .order_by(CheckpointRow.sequence)
        )
        if limit is not None:
            query = query.limit(limit)
        async with self.session() as session:
            result = await session.execute(query)
            rows = result.scalars().all()
        return [self._to_checkpoint(row) for row in rows]
