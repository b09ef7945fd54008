"""graphrun: resumable, checkpointed workflow graph execution."""

from .channels import EventChannel, get_channel
from .config import GraphrunConfig, load_config
from .contracts import (
    Branch,
    Connection,
    Continue,
    ExecutionEvent,
    Failure,
    Node,
    NodeInvocation,
    Pause,
    ResumePoint,
    RunResult,
    WorkflowDefinition,
)
from .errors import (
    ExecutionConflictError,
    GraphrunError,
    NotFoundError,
    WorkflowExecutionError,
    WorkflowTimeoutError,
)
from .persistence import Checkpoint, ExecutionRecord, ExecutionStatus, get_repository
from .registry import ExecutorRegistry
from .scheduler import GraphScheduler
from .state import ExecutionState
from .workflows import InMemoryWorkflowStore, WorkflowStore, load_workflow_file

__version__ = "0.1.0"
__all__ = [
    "Branch",
    "Checkpoint",
    "Connection",
    "Continue",
    "EventChannel",
    "ExecutionConflictError",
    "ExecutionEvent",
    "ExecutionRecord",
    "ExecutionState",
    "ExecutionStatus",
    "ExecutorRegistry",
    "Failure",
    "GraphScheduler",
    "GraphrunConfig",
    "GraphrunError",
    "InMemoryWorkflowStore",
    "Node",
    "NodeInvocation",
    "NotFoundError",
    "Pause",
    "ResumePoint",
    "RunResult",
    "WorkflowDefinition",
    "WorkflowExecutionError",
    "WorkflowStore",
    "WorkflowTimeoutError",
    "get_channel",
    "get_repository",
    "load_config",
    "load_workflow_file",
]
