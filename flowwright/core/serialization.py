"""
JSON serialization for FlowGraph objects.

Two input shapes are accepted by ``from_dict``:

- the engine's own format: ``{"nodes": [{"id", "kind", "payload", "pairId"}],
  "edges": [{"id", "source", "target", "branchLabel"}]}``
- the graph editor's canvas export: nodes carry ``type`` and a ``data`` record
  with nested ``action``/``assertion``/``condition``/``loop``/``customCode``
  sub-records, and edges carry the handle id in ``sourceHandle``.

Output is always the engine's own format.
"""

import json
from typing import Any, Dict, Optional

from flowwright.core.ir import (
    FlowGraph, StepNode, Edge, StepKind, TRUE_LABEL, FALSE_LABEL, LOOP_BODY_LABEL, LOOP_EXIT_LABEL,
)
from flowwright.errors import StructuralError

KIND_ALIASES: Dict[str, str] = {
    "condition": StepKind.BRANCH.value,
    "conditionEnd": StepKind.BRANCH_END.value,
    "branch-end": StepKind.BRANCH_END.value,
    "loop-end": StepKind.LOOP_END.value,
    "frame-enter": StepKind.FRAME_ENTER.value,
    "frame-exit": StepKind.FRAME_EXIT.value,
    "get-value": StepKind.GET_TEXT.value,
}

EDGE_LABELS = {TRUE_LABEL, FALSE_LABEL, LOOP_BODY_LABEL, LOOP_EXIT_LABEL}

# Nested records of the editor's node data, merged into the flat payload in this order
_DATA_RECORDS = ("action", "assertion", "condition", "loop", "customCode")
_DATA_RESERVED = {"label", "pairId"} | set(_DATA_RECORDS)


class JsonSerializer:
    """Serializes and deserializes FlowGraph objects to/from JSON."""

    @staticmethod
    def to_dict(graph: FlowGraph) -> Dict[str, Any]:
        nodes_data = []
        for node in graph.nodes.values():
            entry: Dict[str, Any] = {
                "id": node.id,
                "kind": node.kind,
                "label": node.label,
                "payload": node.payload,
            }
            if node.pair_id:
                entry["pairId"] = node.pair_id
            nodes_data.append(entry)

        edges_data = []
        for edge in graph.edges:
            entry = {"id": edge.id, "source": edge.source_id, "target": edge.target_id}
            if edge.branch_label:
                entry["branchLabel"] = edge.branch_label
            edges_data.append(entry)

        return {
            "name": graph.name,
            "metadata": graph.metadata,
            "nodes": nodes_data,
            "edges": edges_data,
        }

    @staticmethod
    def to_json(graph: FlowGraph, indent: int = 2) -> str:
        return json.dumps(JsonSerializer.to_dict(graph), indent=indent, ensure_ascii=False)

    @staticmethod
    def _normalize_kind(raw_kind: str, payload: Dict[str, Any]) -> str:
        if raw_kind == "iframe":
            # The editor models both ends of a frame scope as one node type.
            action = payload.pop("iframeAction", "switch")
            return StepKind.FRAME_EXIT.value if action == "exit" else StepKind.FRAME_ENTER.value
        return KIND_ALIASES.get(raw_kind, raw_kind)

    @staticmethod
    def _node_from_dict(node_data: Dict[str, Any]) -> StepNode:
        node_id = node_data.get("id")
        if not node_id:
            raise StructuralError(f"Node without an id: {node_data!r}")

        if "kind" in node_data:
            raw_kind = node_data["kind"]
            payload = dict(node_data.get("payload") or {})
            pair_id = node_data.get("pairId")
            label = node_data.get("label", "")
        else:
            raw_kind = node_data.get("type")
            data = node_data.get("data") or {}
            payload = {}
            for record in _DATA_RECORDS:
                if isinstance(data.get(record), dict):
                    payload.update(data[record])
            payload.update({k: v for k, v in data.items() if k not in _DATA_RESERVED})
            pair_id = data.get("pairId")
            label = data.get("label", "")

        if not raw_kind:
            raise StructuralError(f"Node {node_id} has no kind")

        kind = JsonSerializer._normalize_kind(str(raw_kind), payload)
        return StepNode(node_id=str(node_id), kind=kind, payload=payload, pair_id=pair_id, label=label)

    @staticmethod
    def _edge_label(edge_data: Dict[str, Any]) -> Optional[str]:
        for key in ("branchLabel", "sourceHandle", "label"):
            value = edge_data.get(key)
            if value is None:
                continue
            value = str(value).lower() if isinstance(value, bool) else str(value)
            if value in EDGE_LABELS:
                return value
            if key == "branchLabel":
                raise StructuralError(f"Edge {edge_data.get('id')} has unsupported branch label '{value}'")
        return None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> FlowGraph:
        graph = FlowGraph(name=data.get("name", "LoadedFlow"), metadata=data.get("metadata"))

        for node_data in data.get("nodes", []):
            graph.add_node(JsonSerializer._node_from_dict(node_data))

        for edge_data in data.get("edges", []):
            try:
                source, target = edge_data["source"], edge_data["target"]
            except KeyError as exc:
                raise StructuralError(f"Edge is missing its {exc.args[0]}: {edge_data!r}") from exc
            graph.add_edge(Edge(
                source_id=str(source),
                target_id=str(target),
                branch_label=JsonSerializer._edge_label(edge_data),
                edge_id=edge_data.get("id"),
            ))

        return graph

    @staticmethod
    def from_json(json_str: str) -> FlowGraph:
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as exc:
            raise StructuralError(f"Flow is not valid JSON: {exc}") from exc
        return JsonSerializer.from_dict(data)
