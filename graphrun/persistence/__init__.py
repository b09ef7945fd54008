"""Persistence layer for graphrun executions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import GraphrunConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .models import Checkpoint, ExecutionRecord, ExecutionStatus
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

_repository_instance: ExecutionRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[GraphrunConfig] = None
) -> ExecutionRepository:
    """Factory function to obtain an execution repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``GRAPHRUN_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.

    URLs naming an async driver (``sqlite+aiosqlite://``,
    ``postgresql+asyncpg://``) are served by the SQLModel backend in
    :mod:`graphrun.db`; call ``await repo.init_db()`` before first use.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("GRAPHRUN_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryExecutionRepository()
        return _repository_instance

    scheme = database_url.split("://", 1)[0]
    if "+" in scheme:
        from ..db import ExecutionDB

        _repository_instance = ExecutionDB(database_url)
    elif scheme == "sqlite":
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteExecutionRepository(path)
    elif scheme in ("postgres", "postgresql"):
        from .postgres import PostgresExecutionRepository

        _repository_instance = PostgresExecutionRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "Checkpoint",
    "ExecutionRecord",
    "ExecutionStatus",
    "ExecutionRepository",
    "SQLiteExecutionRepository",
    "InMemoryExecutionRepository",
    "get_repository",
]
