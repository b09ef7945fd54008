"""Graph interpreter that drives a workflow to completion, pause or failure."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, NoReturn, Optional

from .channels import EventChannel, execution_topic, get_channel
from .config import GraphrunConfig, load_config
from .contracts import (
    Branch,
    ExecutionEvent,
    Failure,
    NodeInvocation,
    Pause,
    PublishFn,
    RunResult,
    WorkflowDefinition,
)
from .errors import (
    GraphrunError,
    NotFoundError,
    WorkflowExecutionError,
    get_error_message,
    is_retryable_error,
)
from .graph import (
    Adjacency,
    build_adjacency,
    count_executable_nodes,
    find_entry_nodes,
    successors,
    validate_definition,
)
from .persistence import ExecutionRepository, get_repository
from .persistence.models import ExecutionStatus
from .registry import ExecutorRegistry, normalize_result
from .state import ExecutionState
from .workflows import InMemoryWorkflowStore, WorkflowStore

logger = logging.getLogger(__name__)


class _Progress:
    """Tracks the node currently in flight for timeout reporting."""

    def __init__(self) -> None:
        self.node_id: Optional[str] = None


class GraphScheduler:
    """Executes workflow definitions node by node with durable checkpoints.

    Nodes run one at a time in FIFO order. Each successful node is committed
    to the execution context and checkpointed before its successors are
    queued, so an interrupted run can continue from its last checkpoint.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        repository: Optional[ExecutionRepository] = None,
        workflows: Optional[WorkflowStore] = None,
        channel: Optional[EventChannel] = None,
        config: Optional[GraphrunConfig] = None,
        tools: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._config = config or load_config()
        self._registry = registry
        self._repository = repository or get_repository(config=self._config)
        self._workflows = workflows or InMemoryWorkflowStore()
        self._channel = channel or get_channel(config=self._config)
        self._tools = dict(tools or {})
        self._definitions: Dict[str, WorkflowDefinition] = {}

    @property
    def repository(self) -> ExecutionRepository:
        return self._repository

    @property
    def channel(self) -> EventChannel:
        return self._channel

    @property
    def trigger_types(self) -> List[str]:
        return list(self._config.execution.trigger_node_types)

    # ------------------------------------------------------------------
    # Entry points

    async def run(
        self,
        definition: WorkflowDefinition,
        user_id: str,
        initial_context: Optional[Dict[str, Any]] = None,
    ) -> RunResult:
        """Execute ``definition`` from its entry nodes."""
        try:
            self._check_definition(definition)
        except GraphrunError as exc:
            logger.error(f"Workflow {definition.id} rejected: {exc.message}")
            return RunResult(
                success=False, execution_id=None, error=exc.message, retryable=exc.retryable
            )

        self._definitions[definition.id] = definition
        state = await ExecutionState.create(
            definition.id,
            user_id,
            initial_context or {},
            total_steps=count_executable_nodes(definition, self.trigger_types),
            repository=self._repository,
        )
        logger.info(
            f"Starting execution {state.execution_id} of workflow {definition.id}"
        )
        queue = deque(find_entry_nodes(definition, self.trigger_types))
        return await self._execute(state, definition, queue, set())

    async def resume(
        self,
        execution_id: str,
        context_updates: Optional[Dict[str, Any]] = None,
        definition: Optional[WorkflowDefinition] = None,
    ) -> RunResult:
        """Continue a paused or failed execution.

        Args:
            execution_id: Execution to continue.
            context_updates: Payload of the external event a paused node was
                waiting for; merged into the context before continuing.
            definition: Workflow definition to use instead of looking it up
                in the workflow store.
        """
        try:
            state = await ExecutionState.resume(execution_id, self._repository)
            if not state.can_resume():
                raise WorkflowExecutionError.not_resumable(
                    state.workflow_id, execution_id, state.status.value
                )
            definition = definition or await self._load_definition(state.workflow_id)
            self._check_definition(definition)
            await state.mark_running()
        except GraphrunError as exc:
            logger.error(f"Cannot resume execution {execution_id}: {exc.message}")
            return RunResult(
                success=False,
                execution_id=execution_id,
                error=exc.message,
                retryable=exc.retryable,
            )

        if context_updates:
            state.update_context(context_updates)
        # a node runs at most once per execution, including one that failed
        dispatched = state.checkpointed_node_ids()
        queue = self._rebuild_queue(state, definition, dispatched)
        point = state.get_resume_point()
        logger.info(
            f"Resuming execution {execution_id} after node {point.node_id if point else None} "
            f"(step {state.current_step}, {len(queue)} node(s) pending)"
        )
        return await self._execute(state, definition, queue, dispatched, claimed=True)

    async def get_state(self, execution_id: str) -> ExecutionState:
        """Load the persisted state of an execution for inspection."""
        return await ExecutionState.resume(execution_id, self._repository)

    # ------------------------------------------------------------------
    # Run loop

    async def _execute(
        self,
        state: ExecutionState,
        definition: WorkflowDefinition,
        queue: Deque[str],
        dispatched: set[str],
        claimed: bool = False,
    ) -> RunResult:
        timeout_ms = self._config.execution.workflow_timeout_ms
        progress = _Progress()
        try:
            if not claimed:
                await state.mark_running()
            await self._emit(
                state, "execution-start", payload={"status": state.status.value}
            )
            await asyncio.wait_for(
                self._drive(state, definition, queue, dispatched, progress),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            error = WorkflowExecutionError.timeout(
                definition.id, progress.node_id, timeout_ms
            )
            logger.error(f"Execution {state.execution_id}: {error.message}")
            await state.mark_failed(error)
            await self._emit(state, "execution-failed", payload=error.to_client_error())
            return self._result(state, error)
        except GraphrunError as exc:
            if state.status != ExecutionStatus.FAILED:
                await state.mark_failed(exc)
            logger.error(f"Execution {state.execution_id} failed: {exc.to_log_object()}")
            await self._emit(state, "execution-failed", payload=exc.to_client_error())
            return self._result(state, exc)

        if state.status == ExecutionStatus.PAUSED:
            await self._emit(state, "execution-paused")
            return self._result(state)

        await state.mark_completed()
        logger.info(
            f"Execution {state.execution_id} completed after {state.current_step} step(s)"
        )
        await self._emit(state, "execution-complete")
        return self._result(state)

    async def _drive(
        self,
        state: ExecutionState,
        definition: WorkflowDefinition,
        queue: Deque[str],
        dispatched: set[str],
        progress: _Progress,
    ) -> None:
        nodes = definition.node_map()
        adjacency = build_adjacency(definition.connections)
        triggers = set(self.trigger_types)

        while queue:
            node_id = queue.popleft()
            if node_id in dispatched:
                continue
            dispatched.add(node_id)

            node = nodes.get(node_id)
            if node is None:
                error = WorkflowExecutionError.node_not_found(definition.id, node_id)
                await self._fail_node(state, node_id, node_id, error)
            if node.type in triggers:
                queue.extend(successors(adjacency, node_id)[0])
                continue

            progress.node_id = node_id
            try:
                executor = self._registry.get(node.type, definition.id, node_id)
            except WorkflowExecutionError as exc:
                await self._fail_node(state, node_id, node.display_name, exc)

            await self._emit(
                state,
                "node-start",
                node_id,
                {"node_type": node.type, "node_name": node.display_name},
            )
            invocation = NodeInvocation(
                data=node.data,
                node_id=node_id,
                node_name=node.display_name,
                node_type=node.type,
                workflow_id=definition.id,
                execution_id=state.execution_id,
                user_id=state.user_id,
                context=state.get_context(),
                tools=dict(self._tools),
                publish=self._publisher(state, node_id),
            )
            try:
                raw = await executor(invocation)
            except GraphrunError as exc:
                error = WorkflowExecutionError(
                    definition.id,
                    node_id,
                    exc.message,
                    retryable=exc.retryable,
                    additional_context={"node_type": node.type, "code": exc.code},
                )
                await self._fail_node(state, node_id, node.display_name, error)
            except Exception as exc:
                logger.exception(f"Executor for node {node_id} ({node.type}) raised")
                error = WorkflowExecutionError(
                    definition.id,
                    node_id,
                    get_error_message(exc),
                    retryable=is_retryable_error(exc),
                    additional_context={"node_type": node.type},
                )
                await self._fail_node(state, node_id, node.display_name, error)

            try:
                result = normalize_result(raw)
            except TypeError as exc:
                error = WorkflowExecutionError(
                    definition.id,
                    node_id,
                    get_error_message(exc),
                    additional_context={"node_type": node.type},
                )
                await self._fail_node(state, node_id, node.display_name, error)

            if isinstance(result, Failure):
                error = WorkflowExecutionError(
                    definition.id,
                    node_id,
                    result.error,
                    retryable=result.retryable,
                    additional_context={"node_type": node.type},
                )
                await self._fail_node(state, node_id, node.display_name, error)

            branch = result.branch if isinstance(result, (Branch, Pause)) else None
            state.set_context(result.context)
            state.increment_step()
            if isinstance(result, Pause):
                state.set_status(ExecutionStatus.PAUSED)
                await state.create_checkpoint(node_id, node.display_name, branch)
                progress.node_id = None
                logger.info(
                    f"Execution {state.execution_id} paused at node {node_id} "
                    f"(step {state.current_step})"
                )
                return

            await state.create_checkpoint(node_id, node.display_name, branch)
            progress.node_id = None
            await self._emit(
                state,
                "node-complete",
                node_id,
                {"step": state.current_step, "branch": branch},
            )

            targets, fallback = successors(adjacency, node_id, branch)
            if fallback:
                logger.warning(
                    f"Node {node_id} selected branch {branch!r} with no matching "
                    "connection; following all outgoing connections"
                )
            queue.extend(targets)

    async def _fail_node(
        self,
        state: ExecutionState,
        node_id: str,
        node_name: str,
        error: WorkflowExecutionError,
    ) -> NoReturn:
        """Record ``error`` against ``node_id`` and abort the run."""
        logger.error(f"Node {node_id} failed in execution {state.execution_id}: {error.message}")
        await state.create_error_checkpoint(node_id, node_name, error)
        await self._emit(state, "node-error", node_id, error.to_client_error())
        raise error

    # ------------------------------------------------------------------
    # Helpers

    def _check_definition(self, definition: WorkflowDefinition) -> None:
        validation = validate_definition(definition, self.trigger_types)
        if not validation.valid:
            raise WorkflowExecutionError(
                definition.id,
                None,
                f"Invalid workflow definition: {'; '.join(validation.errors)}",
                additional_context={"errors": validation.errors},
            )
        for warning in validation.warnings:
            logger.debug(f"Workflow {definition.id}: {warning}")
        if validation.cycle and self._config.execution.cycle_policy == "reject":
            raise WorkflowExecutionError.cyclic_dependency(definition.id, validation.cycle)

    async def _load_definition(self, workflow_id: str) -> WorkflowDefinition:
        definition = self._definitions.get(workflow_id)
        if definition is None:
            definition = await self._workflows.get_workflow(workflow_id)
        if definition is None:
            raise NotFoundError("Workflow", workflow_id)
        return definition

    def _rebuild_queue(
        self,
        state: ExecutionState,
        definition: WorkflowDefinition,
        dispatched: Iterable[str],
    ) -> Deque[str]:
        """Reconstruct the pending work queue of an interrupted run.

        The queue is replayed from the entry nodes and the successors of every
        checkpointed node, in checkpoint order, minus nodes already dispatched.
        A failed node is passed through: its successors are queued, the node
        itself is not.
        """
        dispatched = set(dispatched)
        adjacency: Adjacency = build_adjacency(definition.connections)
        ordered: List[str] = list(find_entry_nodes(definition, self.trigger_types))
        for checkpoint in state.get_checkpoints():
            ordered.extend(successors(adjacency, checkpoint.node_id, checkpoint.branch)[0])

        queue: Deque[str] = deque()
        seen: set[str] = set()
        for node_id in ordered:
            if node_id in dispatched or node_id in seen:
                continue
            seen.add(node_id)
            queue.append(node_id)
        return queue

    def _publisher(self, state: ExecutionState, node_id: str) -> PublishFn:
        async def publish(event_type: str, payload: Dict[str, Any]) -> None:
            await self._emit(state, event_type, node_id, payload)

        return publish

    async def _emit(
        self,
        state: ExecutionState,
        event_type: str,
        node_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = ExecutionEvent(
            type=event_type,
            execution_id=state.execution_id,
            workflow_id=state.workflow_id,
            node_id=node_id,
            payload=payload or {},
        )
        try:
            await self._channel.publish(execution_topic(state.execution_id), event)
        except Exception as exc:
            logger.warning(
                f"Failed to publish {event_type} for execution {state.execution_id}: {exc}"
            )

    def _result(
        self, state: ExecutionState, error: Optional[GraphrunError] = None
    ) -> RunResult:
        if error is not None:
            return RunResult(
                success=False,
                execution_id=state.execution_id,
                status=state.status,
                error=error.message,
                retryable=error.retryable,
                checkpoints_count=len(state.get_checkpoints()),
            )
        return RunResult(
            success=True,
            execution_id=state.execution_id,
            status=state.status,
            output=state.get_context(),
            checkpoints_count=len(state.get_checkpoints()),
        )
