"""Core contracts exchanged between the scheduler, executors and callers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .persistence.models import ExecutionStatus

DEFAULT_OUTPUT = "main"

# Reserved context keys understood by ``normalize_result`` for executors that
# return plain dictionaries instead of a ``NodeResult``.
PAUSE_KEY = "__pause"
SELECTED_BRANCH_KEY = "__selectedBranch"
RESERVED_KEYS = frozenset({PAUSE_KEY, SELECTED_BRANCH_KEY})


class Node(BaseModel):
    """A typed unit of work in a workflow graph."""

    id: str
    type: str
    name: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.type


class Connection(BaseModel):
    """Directed edge from one node's named output to another node's input."""

    from_node_id: str = Field(alias="fromNodeId")
    to_node_id: str = Field(alias="toNodeId")
    from_output: str = Field(default=DEFAULT_OUTPUT, alias="fromOutput")
    to_input: str = Field(default=DEFAULT_OUTPUT, alias="toInput")

    model_config = ConfigDict(populate_by_name=True)


class WorkflowDefinition(BaseModel):
    """Nodes and connections of a workflow as supplied by the CRUD layer."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def node_map(self) -> Dict[str, Node]:
        return {n.id: n for n in self.nodes}


# ----------------------------------------------------------------------
# Executor results


class Continue(BaseModel):
    """Node finished; follow every outgoing edge."""

    kind: Literal["continue"] = "continue"
    context: Dict[str, Any] = Field(default_factory=dict)


class Pause(BaseModel):
    """Node is waiting on an external event; suspend the run."""

    kind: Literal["pause"] = "pause"
    context: Dict[str, Any] = Field(default_factory=dict)
    branch: Optional[str] = None


class Branch(BaseModel):
    """Node selected one named output; follow only its edges."""

    kind: Literal["branch"] = "branch"
    branch: str
    context: Dict[str, Any] = Field(default_factory=dict)


class Failure(BaseModel):
    """Node reported an error without raising."""

    kind: Literal["failure"] = "failure"
    error: str
    retryable: bool = True


NodeResult = Union[Continue, Pause, Branch, Failure]


# ----------------------------------------------------------------------
# Executor invocation

PublishFn = Callable[[str, Dict[str, Any]], Awaitable[None]]


async def _noop_publish(event_type: str, payload: Dict[str, Any]) -> None:
    return None


class NodeInvocation(BaseModel):
    """Everything a node executor receives for one dispatch."""

    data: Dict[str, Any] = Field(default_factory=dict)
    node_id: str
    node_name: str
    node_type: str
    workflow_id: str
    execution_id: str
    user_id: str
    context: Dict[str, Any] = Field(default_factory=dict)
    tools: Dict[str, Any] = Field(default_factory=dict)
    publish: PublishFn = _noop_publish

    model_config = ConfigDict(arbitrary_types_allowed=True)


NodeExecutor = Callable[[NodeInvocation], Awaitable[Union[NodeResult, Dict[str, Any]]]]


# ----------------------------------------------------------------------
# Scheduler outputs


class ExecutionEvent(BaseModel):
    """Lifecycle or executor event published on an execution's channel."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    execution_id: str
    workflow_id: str
    node_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionEvent":
        return cls.model_validate_json(data)


class ResumePoint(BaseModel):
    """Where a resumed execution continues from."""

    node_id: str
    step_number: int
    branch: Optional[str] = None
    failed: bool = False


class RunResult(BaseModel):
    """Uniform outcome of ``run`` and ``resume``."""

    success: bool
    execution_id: Optional[str] = None
    status: Optional[ExecutionStatus] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = False
    checkpoints_count: int = 0

    @property
    def paused(self) -> bool:
        return self.status == ExecutionStatus.PAUSED
