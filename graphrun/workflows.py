"""Workflow definition lookup used when resuming executions."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Protocol, runtime_checkable

import yaml

from .contracts import WorkflowDefinition


@runtime_checkable
class WorkflowStore(Protocol):
    """Read side of the workflow CRUD layer."""

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        ...


class InMemoryWorkflowStore(WorkflowStore):
    """Keeps definitions in a dict; suitable for tests and single-process use."""

    def __init__(self, definitions: Optional[list[WorkflowDefinition]] = None) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.add(definition)

    def add(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition.model_copy(deep=True)

    async def save(self, definition: WorkflowDefinition) -> None:
        self.add(definition)

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        definition = self._definitions.get(workflow_id)
        return definition.model_copy(deep=True) if definition else None


def load_workflow_file(path: Path | str) -> WorkflowDefinition:
    """Read a workflow definition from a JSON or YAML file.

    Both ``fromNodeId`` and ``from_node_id`` connection keys are accepted.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Workflow file {path} must contain a mapping")
    return WorkflowDefinition.model_validate(data)
