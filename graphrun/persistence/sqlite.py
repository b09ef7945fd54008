"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

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


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                initial_context TEXT NOT NULL,
                context TEXT NOT NULL,
                current_step INTEGER NOT NULL DEFAULT 0,
                total_steps INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(id),
                sequence INTEGER NOT NULL,
                node_id TEXT NOT NULL,
                node_name TEXT NOT NULL,
                step_number INTEGER NOT NULL,
                context TEXT NOT NULL,
                branch TEXT,
                timestamp TEXT NOT NULL,
                error TEXT,
                UNIQUE (execution_id, sequence)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _insert_execution(self, record: ExecutionRecord) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO executions ({_EXECUTION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
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
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                    record.completed_at.isoformat() if record.completed_at else None,
                ),
            )

    def _update_execution(
        self, conn: sqlite3.Connection, record: ExecutionRecord, expected_version: Optional[int]
    ) -> int:
        row = conn.execute(
            "SELECT version FROM executions WHERE id = ?", (record.id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("Execution", record.id)
        current = row["version"]
        if expected_version is not None and current != expected_version:
            raise ExecutionConflictError(record.id, expected_version, current)
        conn.execute(
            """
            UPDATE executions
            SET status = ?, context = ?, current_step = ?, total_steps = ?,
                error = ?, version = ?, updated_at = ?, completed_at = ?
            WHERE id = ? AND version = ?
            """,
            (
                record.status.value,
                json.dumps(record.context),
                record.current_step,
                record.total_steps,
                record.error,
                current + 1,
                utcnow().isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
                record.id,
                current,
            ),
        )
        return current + 1

    def _save(self, record: ExecutionRecord, expected_version: Optional[int]) -> int:
        with self._lock, self._conn:
            return self._update_execution(self._conn, record, expected_version)

    def _append(self, record: ExecutionRecord, checkpoint: Checkpoint) -> int:
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO checkpoints ({_CHECKPOINT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    checkpoint.id,
                    checkpoint.execution_id,
                    checkpoint.sequence,
                    checkpoint.node_id,
                    checkpoint.node_name,
                    checkpoint.step_number,
                    json.dumps(checkpoint.context),
                    checkpoint.branch,
                    checkpoint.timestamp.isoformat(),
                    checkpoint.error,
                ),
            )
            return self._update_execution(self._conn, record, None)

    @staticmethod
    def _to_record(row: sqlite3.Row, checkpoints: list[Checkpoint]) -> ExecutionRecord:
        return ExecutionRecord(
            id=row["id"],
            workflow_id=row["workflow_id"],
            user_id=row["user_id"],
            status=ExecutionStatus(row["status"]),
            initial_context=json.loads(row["initial_context"]),
            context=json.loads(row["context"]),
            checkpoints=checkpoints,
            current_step=row["current_step"],
            total_steps=row["total_steps"],
            error=row["error"],
            version=row["version"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            completed_at=_dt(row["completed_at"]),
        )

    @staticmethod
    def _to_checkpoint(row: sqlite3.Row) -> Checkpoint:
        return Checkpoint(
            id=row["id"],
            execution_id=row["execution_id"],
            sequence=row["sequence"],
            node_id=row["node_id"],
            node_name=row["node_name"],
            step_number=row["step_number"],
            context=json.loads(row["context"]),
            branch=row["branch"],
            timestamp=_dt(row["timestamp"]),
            error=row["error"],
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_execution(self, record: ExecutionRecord) -> None:
        await asyncio.to_thread(self._insert_execution, record)

    async def save_execution(
        self, record: ExecutionRecord, expected_version: Optional[int] = None
    ) -> int:
        return await asyncio.to_thread(self._save, record, expected_version)

    async def append_checkpoint(
        self, record: ExecutionRecord, checkpoint: Checkpoint
    ) -> int:
        return await asyncio.to_thread(self._append, record, checkpoint)

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE id = ?",
            execution_id,
        )
        if not row:
            return None
        checkpoints = await self.list_checkpoints(execution_id)
        return self._to_record(row, checkpoints)

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[ExecutionRecord]:
        query = f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE 1 = 1"
        params: list[Any] = []
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._to_record(row, []) for row in rows]

    async def list_checkpoints(
        self, execution_id: str, after_sequence: int = 0, limit: Optional[int] = None
    ) -> list[Checkpoint]:
        query = (
            f"SELECT {_CHECKPOINT_COLUMNS} FROM checkpoints "
            "WHERE execution_id = ? AND sequence > ? ORDER BY sequence"
        )
        params: list[Any] = [execution_id, after_sequence]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._to_checkpoint(r) for r in rows]
