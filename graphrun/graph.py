"""Graph construction helpers: adjacency, entry nodes, validation."""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .contracts import Connection, Node, WorkflowDefinition


class AdjacencyEdge(BaseModel):
    """Outgoing edge as seen from its source node."""

    to_node_id: str
    from_output: str
    to_input: str


Adjacency = Dict[str, List[AdjacencyEdge]]


class GraphValidation(BaseModel):
    """Result of :func:`validate_definition`."""

    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    entry_node_ids: List[str] = Field(default_factory=list)
    cycle: Optional[List[str]] = None

    @property
    def valid(self) -> bool:
        return not self.errors


def build_adjacency(connections: Iterable[Connection]) -> Adjacency:
    """Map each source node id to its outgoing edges, in connection order."""
    adjacency: Adjacency = {}
    for conn in connections:
        adjacency.setdefault(conn.from_node_id, []).append(
            AdjacencyEdge(
                to_node_id=conn.to_node_id,
                from_output=conn.from_output,
                to_input=conn.to_input,
            )
        )
    return adjacency


def successors(
    adjacency: Adjacency, node_id: str, branch: Optional[str] = None
) -> tuple[List[str], bool]:
    """Target node ids to visit after ``node_id``.

    With a ``branch`` only edges whose ``from_output`` equals it are followed.
    When no edge matches, every outgoing edge is followed instead; the second
    element of the returned tuple reports that fallback.
    """
    edges = adjacency.get(node_id, [])
    if branch is None:
        return [e.to_node_id for e in edges], False
    selected = [e.to_node_id for e in edges if e.from_output == branch]
    if selected or not edges:
        return selected, False
    return [e.to_node_id for e in edges], True


def find_entry_nodes(
    definition: WorkflowDefinition, trigger_types: Iterable[str]
) -> List[str]:
    """First dispatchable node ids of a workflow.

    Entry points are trigger nodes and nodes without incoming connections,
    falling back to the first node when every node has an incoming edge.
    Triggers are never dispatched: their outgoing edges are followed (through
    chains of triggers) until real nodes are found.
    """
    triggers = set(trigger_types)
    nodes = definition.node_map()
    with_incoming = {c.to_node_id for c in definition.connections}
    adjacency = build_adjacency(definition.connections)

    roots = [
        n.id for n in definition.nodes if n.type in triggers or n.id not in with_incoming
    ]
    if not roots and definition.nodes:
        # fully cyclic graph: start from the first declared node
        roots = [definition.nodes[0].id]

    entry: List[str] = []
    seen: set[str] = set()
    pending = deque(roots)
    while pending:
        node_id = pending.popleft()
        if node_id in seen:
            continue
        seen.add(node_id)
        node = nodes.get(node_id)
        if node is None:
            continue
        if node.type in triggers:
            pending.extend(e.to_node_id for e in adjacency.get(node_id, []))
        elif node_id not in entry:
            entry.append(node_id)
    return entry


def find_cycle(definition: WorkflowDefinition) -> Optional[List[str]]:
    """Return one cycle as a node id path, or ``None`` for an acyclic graph.

    Kahn's algorithm removes every node that is not on or behind a cycle; a
    walk over the remainder then recovers the cycle itself.
    """
    node_ids = [n.id for n in definition.nodes]
    known = set(node_ids)
    adjacency = build_adjacency(
        c for c in definition.connections if c.from_node_id in known and c.to_node_id in known
    )
    in_degree = {nid: 0 for nid in node_ids}
    for edges in adjacency.values():
        for edge in edges:
            in_degree[edge.to_node_id] += 1

    ready = deque(nid for nid, deg in in_degree.items() if deg == 0)
    while ready:
        nid = ready.popleft()
        for edge in adjacency.get(nid, []):
            in_degree[edge.to_node_id] -= 1
            if in_degree[edge.to_node_id] == 0:
                ready.append(edge.to_node_id)

    remaining = {nid for nid, deg in in_degree.items() if deg > 0}
    if not remaining:
        return None

    # every remaining node has a predecessor in ``remaining``, so walking
    # predecessors inside it must revisit a node
    predecessors: Dict[str, List[str]] = {}
    for source, edges in adjacency.items():
        for edge in edges:
            if source in remaining and edge.to_node_id in remaining:
                predecessors.setdefault(edge.to_node_id, []).append(source)

    path: List[str] = []
    index: Dict[str, int] = {}
    current = next(nid for nid in node_ids if nid in remaining)
    while current not in index:
        index[current] = len(path)
        path.append(current)
        current = predecessors[current][0]
    cycle = list(reversed(path[index[current]:]))
    return cycle + [cycle[0]]


def topological_order(definition: WorkflowDefinition) -> Optional[List[Node]]:
    """Nodes in dependency order, or ``None`` when the graph has a cycle."""
    if find_cycle(definition) is not None:
        return None
    nodes = definition.node_map()
    in_degree = {n.id: 0 for n in definition.nodes}
    adjacency = build_adjacency(
        c for c in definition.connections if c.from_node_id in nodes and c.to_node_id in nodes
    )
    for edges in adjacency.values():
        for edge in edges:
            in_degree[edge.to_node_id] += 1
    ready = deque(nid for nid, deg in in_degree.items() if deg == 0)
    ordered: List[Node] = []
    while ready:
        nid = ready.popleft()
        ordered.append(nodes[nid])
        for edge in adjacency.get(nid, []):
            in_degree[edge.to_node_id] -= 1
            if in_degree[edge.to_node_id] == 0:
                ready.append(edge.to_node_id)
    return ordered


def count_executable_nodes(
    definition: WorkflowDefinition, trigger_types: Iterable[str]
) -> int:
    triggers = set(trigger_types)
    return sum(1 for n in definition.nodes if n.type not in triggers)


def validate_definition(
    definition: WorkflowDefinition, trigger_types: Iterable[str]
) -> GraphValidation:
    """Check a definition before execution.

    Orphan edges, duplicate node ids and a missing entry point are errors; a
    cycle is reported in ``cycle`` and as a warning, since whether it is fatal
    depends on the configured cycle policy. Disconnected nodes are warnings.
    """
    trigger_types = list(trigger_types)
    result = GraphValidation()
    node_ids = [n.id for n in definition.nodes]
    known = set(node_ids)

    if not definition.nodes:
        result.errors.append("Workflow has no nodes")
        return result

    duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
    for nid in duplicates:
        result.errors.append(f'Duplicate node id "{nid}"')

    for conn in definition.connections:
        if conn.from_node_id not in known:
            result.errors.append(
                f'Connection references non-existent source node "{conn.from_node_id}"'
            )
        if conn.to_node_id not in known:
            result.errors.append(
                f'Connection references non-existent target node "{conn.to_node_id}"'
            )

    result.entry_node_ids = find_entry_nodes(definition, trigger_types)
    if not result.entry_node_ids:
        if count_executable_nodes(definition, trigger_types) == 0:
            result.warnings.append("Workflow only contains trigger nodes")
        else:
            result.errors.append("No entry node found (need a trigger or root node)")

    connected = {c.from_node_id for c in definition.connections} | {
        c.to_node_id for c in definition.connections
    }
    for node in definition.nodes:
        if len(definition.nodes) > 1 and node.id not in connected:
            result.warnings.append(
                f'Node "{node.id}" ({node.type}) is disconnected from the graph'
            )

    result.cycle = find_cycle(definition)
    if result.cycle:
        result.warnings.append(
            f"Workflow contains a cycle: {' -> '.join(result.cycle)}"
        )
    return result
