import asyncio
from typing import Any, Dict, List

import pytest

import graphrun.persistence as persistence
from graphrun.channels import InMemoryEventChannel
from graphrun.config import ExecutionConfig, GraphrunConfig
from graphrun.contracts import Branch, Connection, Node, NodeInvocation, WorkflowDefinition
from graphrun.persistence import InMemoryExecutionRepository
from graphrun.registry import ExecutorRegistry
from graphrun.scheduler import GraphScheduler


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep tests away from local config files, env vars and the repo singleton."""
    monkeypatch.chdir(tmp_path)
    for var in (
        "GRAPHRUN_CONFIG",
        "GRAPHRUN_DATABASE_URL",
        "DATABASE_URL",
        "GRAPHRUN_WORKFLOW_TIMEOUT_MS",
        "GRAPHRUN_EVENTS",
    ):
        monkeypatch.delenv(var, raising=False)
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


def _make_definition(
    nodes: List[tuple], edges: List[tuple], workflow_id: str = "wf-test"
) -> WorkflowDefinition:
    """Build a definition from ``(id, type)`` nodes and ``(src, dst[, output])`` edges."""
    return WorkflowDefinition(
        id=workflow_id,
        nodes=[Node(id=node_id, type=node_type, name=node_id) for node_id, node_type in nodes],
        connections=[
            Connection(
                from_node_id=edge[0],
                to_node_id=edge[1],
                from_output=edge[2] if len(edge) > 2 else "main",
            )
            for edge in edges
        ],
    )


class RecordingRegistry(ExecutorRegistry):
    """Registry whose default executors record the dispatch order."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[str] = []

        async def action(invocation: NodeInvocation) -> Dict[str, Any]:
            self.calls.append(invocation.node_id)
            context = dict(invocation.context)
            context[invocation.node_id] = "done"
            return context

        async def condition(invocation: NodeInvocation) -> Branch:
            self.calls.append(invocation.node_id)
            selected = invocation.context.get("branch", invocation.data.get("branch", "yes"))
            return Branch(branch=selected, context=dict(invocation.context))

        self.register("ACTION", action)
        self.register("CONDITION", condition)


@pytest.fixture
def registry() -> RecordingRegistry:
    return RecordingRegistry()


@pytest.fixture
def repository() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def channel() -> InMemoryEventChannel:
    return InMemoryEventChannel(keep_history=True)


@pytest.fixture
def make_scheduler(registry, repository, channel):
    def factory(**execution: Any) -> GraphScheduler:
        config = GraphrunConfig(execution=ExecutionConfig(**execution))
        return GraphScheduler(
            registry, repository=repository, channel=channel, config=config
        )

    return factory


@pytest.fixture
def never_resolves():
    async def executor(invocation: NodeInvocation) -> Dict[str, Any]:
        await asyncio.Event().wait()
        return {}

    return executor


@pytest.fixture
def make_definition():
    return _make_definition
