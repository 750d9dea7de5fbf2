import json

import pytest
from flowwright.core.ir import FlowGraph, StepNode, Edge
from flowwright.core.serialization import JsonSerializer
from flowwright.errors import StructuralError

def test_json_roundtrip():
    graph = FlowGraph("Test", metadata={"author": "qa"})
    graph.add_node(StepNode(node_id="b", kind="branch", payload={"selector": "#x"}, pair_id="b-end", label="Has x?"))
    graph.add_node(StepNode(node_id="c", kind="click", payload={"selector": "#x"}))
    graph.add_node(StepNode(node_id="b-end", kind="branchEnd"))
    graph.add_edge(Edge("b", "c", branch_label="true"))
    graph.add_edge(Edge("c", "b-end"))
    graph.add_edge(Edge("b", "b-end", branch_label="false"))

    json_str = JsonSerializer.to_json(graph)

    # Verify JSON structure loosely
    data = json.loads(json_str)
    assert data["name"] == "Test"
    assert len(data["nodes"]) == 3
    assert data["nodes"][0]["pairId"] == "b-end"
    assert data["edges"][0]["branchLabel"] == "true"
    assert "branchLabel" not in data["edges"][1]

    # Reconstruct
    graph2 = JsonSerializer.from_json(json_str)
    assert graph2.name == graph.name
    assert graph2.metadata == {"author": "qa"}
    assert list(graph2.nodes) == ["b", "c", "b-end"]

    branch = graph2.get_node("b")
    assert branch.kind == "branch"
    assert branch.label == "Has x?"
    assert branch.pair_id == "b-end"
    assert branch.payload == {"selector": "#x"}

    assert [(e.source_id, e.target_id, e.branch_label) for e in graph2.edges] == [
        ("b", "c", "true"),
        ("c", "b-end", None),
        ("b", "b-end", "false"),
    ]

def test_editor_export_is_normalized():
    """Canvas exports nest payload records under data and label edges by handle."""
    data = {
        "name": "Editor flow",
        "nodes": [
            {"id": "1", "type": "navigate", "data": {"label": "Open", "action": {"url": "example.com"}}},
            {"id": "2", "type": "condition", "data": {
                "label": "Logged in?", "pairId": "3",
                "condition": {"type": "url", "value": "/dashboard"},
            }},
            {"id": "3", "type": "conditionEnd", "data": {}},
            {"id": "4", "type": "iframe", "data": {"iframeAction": "switch", "selector": "#pay"}},
            {"id": "5", "type": "iframe", "data": {"iframeAction": "exit"}},
            {"id": "6", "type": "customCode", "data": {"customCode": {"code": "return 1", "wrapInTryCatch": True}}},
        ],
        "edges": [
            {"id": "a", "source": "1", "target": "2"},
            {"id": "b", "source": "2", "target": "4", "sourceHandle": "true"},
            {"id": "c", "source": "2", "target": "3", "sourceHandle": "false"},
            {"id": "d", "source": "4", "target": "5"},
            {"id": "e", "source": "5", "target": "3"},
            {"id": "f", "source": "3", "target": "6", "sourceHandle": "bottom"},
        ],
    }

    graph = JsonSerializer.from_dict(data)

    assert graph.get_node("1").payload == {"url": "example.com"}
    assert graph.get_node("1").label == "Open"
    assert graph.get_node("2").kind == "branch"
    assert graph.get_node("2").pair_id == "3"
    assert graph.get_node("2").payload["type"] == "url"
    assert graph.get_node("3").kind == "branchEnd"
    assert graph.get_node("4").kind == "frameEnter"
    assert graph.get_node("4").payload == {"selector": "#pay"}
    assert graph.get_node("5").kind == "frameExit"
    assert graph.get_node("6").payload == {"code": "return 1", "wrapInTryCatch": True}
    assert [e.branch_label for e in graph.edges] == [None, "true", "false", None, None, None]

def test_unknown_kinds_survive_loading():
    graph = JsonSerializer.from_dict({"nodes": [{"id": "x", "kind": "teleport"}], "edges": []})
    assert graph.get_node("x").kind == "teleport"
    assert not graph.get_node("x").is_known

def test_invalid_json_raises_structural_error():
    with pytest.raises(StructuralError):
        JsonSerializer.from_json("{not json")

def test_unsupported_branch_label_raises():
    data = {
        "nodes": [{"id": "a", "kind": "branch"}, {"id": "b", "kind": "click"}],
        "edges": [{"source": "a", "target": "b", "branchLabel": "maybe"}],
    }
    with pytest.raises(StructuralError):
        JsonSerializer.from_dict(data)

def test_edge_to_missing_node_raises():
    data = {"nodes": [{"id": "a", "kind": "click"}], "edges": [{"source": "a", "target": "ghost"}]}
    with pytest.raises(StructuralError):
        JsonSerializer.from_dict(data)

def test_checkout_flow_roundtrip(checkout_flow):
    reloaded = JsonSerializer.from_json(JsonSerializer.to_json(checkout_flow))

    assert len(reloaded.nodes) == len(checkout_flow.nodes)
    assert len(reloaded.edges) == len(checkout_flow.edges)
    assert reloaded.get_node("wait-payment").payload["condition"]["selector"] == ".spinner"
