"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..errors import ExecutionConflictError, NotFoundError
from .models import Checkpoint, ExecutionRecord, ExecutionStatus, utcnow
from .repository import ExecutionRepository

_EXECUTION_COLUMNS = (
    "id, workflow_id, user_id, status, initial_context, context, current_step, "
    "total_steps, error, version, created_at, updated_at, completed_at"
)
_CHECKPOINT_COLUMNS = (
    "id, execution_id, sequence, node_id, node_name, step_number, context, "
    "branch, timestamp, error"
)


def _json(value: Any) -> Any:
    # asyncpg hands JSONB back as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value or {}


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                initial_context JSONB NOT NULL,
                context JSONB NOT NULL,
                current_step INTEGER NOT NULL DEFAULT 0,
                total_steps INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(id),
                sequence INTEGER NOT NULL,
                node_id TEXT NOT NULL,
                node_name TEXT NOT NULL,
                step_number INTEGER NOT NULL,
                context JSONB NOT NULL,
                branch TEXT,
                timestamp TIMESTAMPTZ NOT NULL,
                error TEXT,
                UNIQUE (execution_id, sequence)
            )
            """
        )

    async def _update_execution(
        self,
        conn: asyncpg.Connection,
        record: ExecutionRecord,
        expected_version: Optional[int],
    ) -> int:
        current = await conn.fetchval(
            "SELECT version FROM executions WHERE id = $1 FOR UPDATE", record.id
        )
        if current is None:
            raise NotFoundError("Execution", record.id)
        if expected_version is not None and current != expected_version:
            raise ExecutionConflictError(record.id, expected_version, current)
        await conn.execute(
            """
            UPDATE executions
            SET status = $1, context = $2, current_step = $3, total_steps = $4,
                error = $5, version = $6, updated_at = $7, completed_at = $8
            WHERE id = $9
            """,
            record.status.value,
            json.dumps(record.context),
            record.current_step,
            record.total_steps,
            record.error,
            current + 1,
            utcnow(),
            record.completed_at,
            record.id,
        )
        return current + 1

    @staticmethod
    def _to_record(row: Any, checkpoints: list[Checkpoint]) -> ExecutionRecord:
        return ExecutionRecord(
            id=row["id"],
            workflow_id=row["workflow_id"],
            user_id=row["user_id"],
            status=ExecutionStatus(row["status"]),
            initial_context=_json(row["initial_context"]),
            context=_json(row["context"]),
            checkpoints=checkpoints,
            current_step=row["current_step"],
            total_steps=row["total_steps"],
            error=row["error"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )

    # ------------------------------------------------------------------
    async def create_execution(self, record: ExecutionRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO executions ({_EXECUTION_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)",
                record.id,
                record.workflow_id,
                record.user_id,
                record.status.value,
                json.dumps(record.initial_context),
                json.dumps(record.context),
                record.current_step,
                record.total_steps,
                record.error,
                record.version,
                record.created_at,
                record.updated_at,
                record.completed_at,
            )
        finally:
            await conn.close()

    async def save_execution(
        self, record: ExecutionRecord, expected_version: Optional[int] = None
    ) -> int:
        conn = await self._connect()
        try:
            async with conn.transaction():
                return await self._update_execution(conn, record, expected_version)
        finally:
            await conn.close()

    async def append_checkpoint(
        self, record: ExecutionRecord, checkpoint: Checkpoint
    ) -> int:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    f"INSERT INTO checkpoints ({_CHECKPOINT_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)",
                    checkpoint.id,
                    checkpoint.execution_id,
                    checkpoint.sequence,
                    checkpoint.node_id,
                    checkpoint.node_name,
                    checkpoint.step_number,
                    json.dumps(checkpoint.context),
                    checkpoint.branch,
                    checkpoint.timestamp,
                    checkpoint.error,
                )
                return await self._update_execution(conn, record, None)
        finally:
            await conn.close()

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = $1",
                execution_id,
            )
            if not row:
                return None
            checkpoint_rows = await conn.fetch(
                f"SELECT {_CHECKPOINT_COLUMNS} FROM checkpoints "
                "WHERE execution_id = $1 ORDER BY sequence",
                execution_id,
            )
        finally:
            await conn.close()
        return self._to_record(row, [self._to_checkpoint(r) for r in checkpoint_rows])

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions "
                "WHERE ($1::text IS NULL OR workflow_id = $1) "
                "AND ($2::text IS NULL OR status = $2) ORDER BY created_at",
                workflow_id,
                status.value if status is not None else None,
            )
        finally:
            await conn.close()
        return [self._to_record(r, []) for r in rows]

    async def list_checkpoints(
        self, execution_id: str, after_sequence: int = 0, limit: Optional[int] = None
    ) -> list[Checkpoint]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_CHECKPOINT_COLUMNS} FROM checkpoints "
                "WHERE execution_id = $1 AND sequence > $2 ORDER BY sequence LIMIT $3",
                execution_id,
                after_sequence,
                limit,
            )
        finally:
            await conn.close()
        return [self._to_checkpoint(r) for r in rows]

    @staticmethod
    def _to_checkpoint(row: Any) -> Checkpoint:
        return Checkpoint(
            id=row["id"],
            execution_id=row["execution_id"],
            sequence=row["sequence"],
            node_id=row["node_id"],
            node_name=row["node_name"],
            step_number=row["step_number"],
            context=_json(row["context"]),
            branch=row["branch"],
            timestamp=row["timestamp"],
            error=row["error"],
        )
