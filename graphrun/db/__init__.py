from .execution_db import ExecutionDB
from .models import CheckpointRow, ExecutionRow

__all__ = [
    "ExecutionRow",
    "CheckpointRow",
    "ExecutionDB",
]
