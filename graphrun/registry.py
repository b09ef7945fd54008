"""Node executor registry and result normalisation."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from .contracts import (
    PAUSE_KEY,
    RESERVED_KEYS,
    SELECTED_BRANCH_KEY,
    Branch,
    Continue,
    Failure,
    NodeExecutor,
    NodeResult,
    Pause,
)
from .errors import WorkflowExecutionError

logger = logging.getLogger(__name__)


class ExecutorRegistry:
    """Maps node types to executor coroutines."""

    def __init__(self, executors: Optional[Dict[str, NodeExecutor]] = None) -> None:
        self._executors: Dict[str, NodeExecutor] = dict(executors or {})

    def register(self, node_type: str, executor: NodeExecutor) -> None:
        """Register ``executor`` for ``node_type``, replacing any previous one."""
        if node_type in self._executors:
            logger.debug(f"Replacing executor for node type {node_type}")
        self._executors[node_type] = executor

    def executor(self, node_type: str) -> Callable[[NodeExecutor], NodeExecutor]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: NodeExecutor) -> NodeExecutor:
            self.register(node_type, fn)
            return fn

        return decorator

    def get(
        self,
        node_type: str,
        workflow_id: str = "unknown",
        node_id: Optional[str] = None,
    ) -> NodeExecutor:
        """Return the executor for ``node_type``.

        Raises:
            WorkflowExecutionError: no executor is registered for the type.
        """
        executor = self._executors.get(node_type)
        if executor is None:
            raise WorkflowExecutionError.missing_executor(workflow_id, node_id, node_type)
        return executor

    def node_types(self) -> List[str]:
        return sorted(self._executors)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)


def normalize_result(result: Any) -> NodeResult:
    """Turn an executor's return value into a ``NodeResult``.

    Executors may return a result model directly, or a plain context dict in
    which ``__pause`` requests suspension and ``__selectedBranch`` names the
    branch to follow. Reserved keys never reach the committed context.
    """
    if isinstance(result, (Continue, Pause, Branch, Failure)):
        if isinstance(result, Failure):
            return result
        return result.model_copy(update={"context": _strip_reserved(result.context)})

    if isinstance(result, BaseModel):
        result = result.model_dump()
    if not isinstance(result, dict):
        raise TypeError(
            f"Executor returned {type(result).__name__}; expected a dict or NodeResult"
        )

    context = _strip_reserved(result)
    branch = result.get(SELECTED_BRANCH_KEY)
    branch = str(branch) if branch is not None else None
    if result.get(PAUSE_KEY):
        return Pause(context=context, branch=branch)
    if branch is not None:
        return Branch(branch=branch, context=context)
    return Continue(context=context)


def _strip_reserved(context: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in context.items() if k not in RESERVED_KEYS}
