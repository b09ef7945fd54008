from graphrun.config import DEFAULT_TRIGGER_NODE_TYPES
from graphrun.contracts import Connection, Node, WorkflowDefinition
from graphrun.graph import (
    build_adjacency,
    count_executable_nodes,
    find_cycle,
    find_entry_nodes,
    successors,
    topological_order,
    validate_definition,
)


def _definition(nodes, edges):
    return WorkflowDefinition(
        id="wf",
        nodes=[Node(id=i, type=t) for i, t in nodes],
        connections=[
            Connection(from_node_id=e[0], to_node_id=e[1], from_output=e[2] if len(e) > 2 else "main")
            for e in edges
        ],
    )


def test_definition_accepts_camel_case_payload():
    definition = WorkflowDefinition.model_validate(
        {
            "id": "wf-camel",
            "userId": "u-1",
            "nodes": [
                {"id": "a", "type": "ACTION", "name": "Send"},
                {"id": "b", "type": "ACTION"},
            ],
            "connections": [
                {"fromNodeId": "a", "toNodeId": "b", "fromOutput": "yes", "toInput": "in"}
            ],
        }
    )

    conn = definition.connections[0]
    assert (conn.from_node_id, conn.to_node_id, conn.from_output, conn.to_input) == (
        "a",
        "b",
        "yes",
        "in",
    )
    assert definition.user_id == "u-1"
    assert definition.get_node("a").display_name == "Send"
    assert definition.get_node("b").display_name == "ACTION"
    assert definition.get_node("zzz") is None


def test_build_adjacency_preserves_connection_order():
    definition = _definition(
        [("a", "X"), ("b", "X"), ("c", "X")],
        [("a", "c"), ("a", "b", "yes")],
    )

    adjacency = build_adjacency(definition.connections)

    assert [e.to_node_id for e in adjacency["a"]] == ["c", "b"]
    assert adjacency["a"][1].from_output == "yes"
    assert "b" not in adjacency


def test_successors_filters_by_branch_with_fallback():
    adjacency = build_adjacency(
        _definition(
            [("b", "X"), ("y", "X"), ("n", "X")],
            [("b", "y", "yes"), ("b", "n", "no")],
        ).connections
    )

    assert successors(adjacency, "b") == (["y", "n"], False)
    assert successors(adjacency, "b", "yes") == (["y"], False)
    assert successors(adjacency, "b", "maybe") == (["y", "n"], True)
    assert successors(adjacency, "leaf", "yes") == ([], False)


def test_entry_nodes_expand_through_triggers():
    definition = _definition(
        [
            ("hook", "WEBHOOK_TRIGGER"),
            ("schedule", "SCHEDULED_TRIGGER"),
            ("a", "ACTION"),
            ("b", "ACTION"),
            ("standalone", "ACTION"),
        ],
        [("hook", "schedule"), ("schedule", "a"), ("a", "b")],
    )

    entry = find_entry_nodes(definition, DEFAULT_TRIGGER_NODE_TYPES)

    assert entry == ["standalone", "a"]
    assert "hook" not in entry
    assert "b" not in entry


def test_entry_nodes_fall_back_to_first_node_when_fully_cyclic():
    definition = _definition(
        [("x", "ACTION"), ("y", "ACTION")],
        [("x", "y"), ("y", "x")],
    )

    assert find_entry_nodes(definition, DEFAULT_TRIGGER_NODE_TYPES) == ["x"]


def test_find_cycle_reports_path():
    definition = _definition(
        [("start", "X"), ("a", "X"), ("b", "X"), ("c", "X"), ("tail", "X")],
        [("start", "a"), ("a", "b"), ("b", "c"), ("c", "a"), ("c", "tail")],
    )

    cycle = find_cycle(definition)

    assert cycle is not None
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}
    edges = {(c.from_node_id, c.to_node_id) for c in definition.connections}
    assert all((src, dst) in edges for src, dst in zip(cycle, cycle[1:]))
    assert topological_order(definition) is None


def test_acyclic_graph_has_topological_order():
    definition = _definition(
        [("c", "X"), ("a", "X"), ("b", "X")],
        [("a", "b"), ("b", "c")],
    )

    assert find_cycle(definition) is None
    assert [n.id for n in topological_order(definition)] == ["a", "b", "c"]


def test_validate_reports_errors_and_warnings():
    definition = _definition(
        [("a", "ACTION"), ("a", "ACTION"), ("b", "ACTION"), ("lonely", "ACTION")],
        [("a", "b"), ("b", "ghost"), ("phantom", "a")],
    )

    result = validate_definition(definition, DEFAULT_TRIGGER_NODE_TYPES)

    assert not result.valid
    assert 'Duplicate node id "a"' in result.errors
    assert any('target node "ghost"' in e for e in result.errors)
    assert any('source node "phantom"' in e for e in result.errors)
    assert any('"lonely"' in w for w in result.warnings)


def test_validate_cycle_is_a_warning():
    definition = _definition(
        [("a", "ACTION"), ("b", "ACTION")],
        [("a", "b"), ("b", "a")],
    )

    result = validate_definition(definition, DEFAULT_TRIGGER_NODE_TYPES)

    assert result.valid
    assert result.cycle is not None
    assert any("cycle" in w for w in result.warnings)


def test_validate_trigger_only_and_empty_workflows():
    triggers_only = _definition([("t", "INITIAL")], [])
    result = validate_definition(triggers_only, DEFAULT_TRIGGER_NODE_TYPES)
    assert result.valid
    assert result.entry_node_ids == []
    assert count_executable_nodes(triggers_only, DEFAULT_TRIGGER_NODE_TYPES) == 0

    empty = validate_definition(_definition([], []), DEFAULT_TRIGGER_NODE_TYPES)
    assert not empty.valid
    assert empty.errors == ["Workflow has no nodes"]
