"""Error hierarchy for graphrun."""

from __future__ import annotations

from typing import Any, Dict, Optional


class GraphrunError(Exception):
    """Base class for all graphrun errors.

    Carries a machine readable ``code``, a context dictionary for logging and
    a ``retryable`` flag that callers use to decide on their retry policy.
    """

    def __init__(
        self,
        code: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}
        self.retryable = retryable

    def to_client_error(self) -> Dict[str, Any]:
        """Sanitized error info suitable for callers and status viewers."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }

    def to_log_object(self) -> Dict[str, Any]:
        """Full error info for structured logging."""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "retryable": self.retryable,
        }


class NotFoundError(GraphrunError):
    """Referenced workflow or execution does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            "NOT_FOUND",
            f"{resource} not found: {resource_id}",
            {"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class WorkflowExecutionError(GraphrunError):
    """Failure while executing a workflow, optionally tied to one node."""

    def __init__(
        self,
        workflow_id: str,
        node_id: Optional[str],
        message: str,
        retryable: bool = False,
        additional_context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = {"workflow_id": workflow_id, "node_id": node_id}
        context.update(additional_context or {})
        super().__init__("WORKFLOW_EXECUTION_ERROR", message, context, retryable)
        self.workflow_id = workflow_id
        self.node_id = node_id

    @classmethod
    def node_not_found(cls, workflow_id: str, node_id: str) -> "WorkflowExecutionError":
        return cls(
            workflow_id,
            node_id,
            f"Node {node_id} not found in workflow {workflow_id}",
        )

    @classmethod
    def missing_executor(
        cls, workflow_id: str, node_id: Optional[str], node_type: str
    ) -> "WorkflowExecutionError":
        return cls(
            workflow_id,
            node_id,
            f"No executor found for node type: {node_type}",
            additional_context={"node_type": node_type},
        )

    @classmethod
    def cyclic_dependency(
        cls, workflow_id: str, cycle: Optional[list[str]] = None
    ) -> "WorkflowExecutionError":
        message = f"Workflow {workflow_id} contains cyclic dependencies"
        if cycle:
            message += f": {' -> '.join(cycle)}"
        return cls(workflow_id, None, message, additional_context={"cycle": cycle or []})

    @classmethod
    def not_resumable(
        cls, workflow_id: str, execution_id: str, status: str
    ) -> "WorkflowExecutionError":
        return cls(
            workflow_id,
            None,
            f"Cannot resume execution {execution_id}: status {status} is not resumable",
            additional_context={"execution_id": execution_id, "status": status},
        )

    @classmethod
    def timeout(
        cls, workflow_id: str, node_id: Optional[str], timeout_ms: int
    ) -> "WorkflowTimeoutError":
        location = f" at node {node_id}" if node_id else ""
        return WorkflowTimeoutError(
            workflow_id,
            node_id,
            f"Workflow execution timed out after {timeout_ms}ms{location}",
            retryable=True,
            additional_context={"timeout_ms": timeout_ms},
        )


class WorkflowTimeoutError(WorkflowExecutionError):
    """The global wall-clock deadline of a run elapsed."""


class ExecutionConflictError(GraphrunError):
    """Another interpreter already claimed this execution."""

    def __init__(self, execution_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            "EXECUTION_CONFLICT",
            f"Execution {execution_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            {
                "execution_id": execution_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.execution_id = execution_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class InvalidStatusTransition(GraphrunError):
    """Status change not permitted by the execution lifecycle."""

    def __init__(self, execution_id: str, current: str, requested: str) -> None:
        super().__init__(
            "INVALID_STATUS_TRANSITION",
            f"Execution {execution_id} cannot move from {current} to {requested}",
            {"execution_id": execution_id, "current": current, "requested": requested},
        )


def is_retryable_error(error: BaseException) -> bool:
    """Return ``False`` only for graphrun errors flagged non-retryable.

    Exceptions from outside graphrun (network resets, driver errors) are
    treated as transient.
    """
    if isinstance(error, GraphrunError):
        return error.retryable
    return True


def get_error_message(error: BaseException) -> str:
    """Extract a displayable message from any exception."""
    if isinstance(error, GraphrunError):
        return error.message
    return str(error) or type(error).__name__
