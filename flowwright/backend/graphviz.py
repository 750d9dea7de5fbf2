import graphviz
from typing import Dict, List, Optional, Set

from flowwright.core.analyzer import GroupKind, analyze_structure
from flowwright.core.ir import FlowGraph, StepKind, StepNode


class _Box:
    """A cluster: one branch/loop group or one frame sub-context."""

    def __init__(self, name: str, label: str, ids: Set[str], anchor: str, style: str):
        self.name = name
        self.label = label
        self.ids = ids
        self.anchor = anchor
        self.style = style
        self.children: List["_Box"] = []
        self.nodes: List[StepNode] = []


class GraphvizExporter:
    """Exports a FlowGraph to Graphviz/Dot source for structural inspection."""

    # Step kind to shape mapping
    _SHAPES = {
        StepKind.BRANCH.value: "diamond",
        StepKind.LOOP.value: "hexagon",
        StepKind.BRANCH_END.value: "point",
        StepKind.LOOP_END.value: "point",
        StepKind.COMMENT.value: "note",
        StepKind.FRAME_ENTER.value: "component",
        StepKind.FRAME_EXIT.value: "component",
    }

    # Payload fields worth showing under the label, first match wins
    _DETAIL_KEYS = ("url", "selector", "sourceSelector", "triggerSelector", "urlPattern", "key", "text", "expression")

    @staticmethod
    def _escape_html(text: str) -> str:
        """Escape HTML special characters for Graphviz."""
        return (
            text.replace('&', '&amp;')
            .replace('<', '&lt;')
            .replace('>', '&gt;')
            .replace('"', '&quot;')
        )

    @staticmethod
    def _html_label(label: str, detail: Optional[str] = None) -> str:
        """Generate HTML-like label for a node, optionally with a detail line."""
        label = GraphvizExporter._escape_html(label)
        if detail:
            detail = GraphvizExporter._escape_html(detail)
            return (
                f'<<TABLE BORDER="0" CELLBORDER="0" CELLSPACING="2" CELLPADDING="4">'
                f'<TR><TD ALIGN="LEFT"><B>{label}</B></TD></TR>'
                f'<TR><TD ALIGN="LEFT"><FONT POINT-SIZE="10">{detail}</FONT></TD></TR>'
                f'</TABLE>>'
            )
        return f'<<B>{label}</B>>'

    @staticmethod
    def _detail(node: StepNode) -> Optional[str]:
        for key in GraphvizExporter._DETAIL_KEYS:
            value = node.payload.get(key)
            if value:
                return str(value)
        return None

    @staticmethod
    def _boxes(flow: FlowGraph) -> List[_Box]:
        """Cluster tree roots; every node lands in the smallest box containing it."""
        structure = analyze_structure(flow)
        boxes: List[_Box] = []
        for i, group in enumerate(structure.groups):
            ids = group.member_ids() | {group.start.id, group.end.id}
            style = "dashed" if group.kind == GroupKind.BRANCH else "rounded"
            boxes.append(_Box(f"cluster_group_{i}", f"{group.kind.value} {group.start.label}", ids, group.start.id, style))
        for ctx in structure.sub_contexts:
            ids = ctx.node_ids() | {ctx.enter.id}
            if ctx.exit is not None:
                ids.add(ctx.exit.id)
            boxes.append(_Box(f"cluster_frame_{ctx.index}", ctx.handle_name, ids, ctx.enter.id, "dotted"))

        roots: List[_Box] = []
        for box in boxes:
            parents = [b for b in boxes if b is not box and len(b.ids) > len(box.ids) and box.anchor in b.ids]
            if parents:
                min(parents, key=lambda b: len(b.ids)).children.append(box)
            else:
                roots.append(box)

        for node in flow.nodes.values():
            holders = [b for b in boxes if node.id in b.ids]
            if holders:
                min(holders, key=lambda b: len(b.ids)).nodes.append(node)
        return roots

    @staticmethod
    def _add_node(dot: graphviz.Digraph, node: StepNode) -> None:
        shape = GraphvizExporter._SHAPES.get(node.kind, "box")
        if node.is_end_marker:
            dot.node(node.id, label="", shape=shape, width="0.15")
            return
        attrs: Dict[str, str] = {"shape": shape}
        if not node.is_known:
            attrs["style"] = "dashed"
            attrs["color"] = "red"
        label = GraphvizExporter._html_label(node.label, GraphvizExporter._detail(node))
        dot.node(node.id, label=label, **attrs)

    @staticmethod
    def _add_box(dot: graphviz.Digraph, box: _Box) -> None:
        with dot.subgraph(name=box.name) as sub:
            sub.attr(label=box.label, style=box.style)
            for node in box.nodes:
                GraphvizExporter._add_node(sub, node)
            for child in box.children:
                GraphvizExporter._add_box(sub, child)

    @staticmethod
    def to_digraph(flow: FlowGraph) -> graphviz.Digraph:
        """Converts a FlowGraph to a graphviz.Digraph object."""
        dot = graphviz.Digraph(name=flow.name, comment=flow.name)
        dot.attr(rankdir='TB')

        roots = GraphvizExporter._boxes(flow)
        boxed: Set[str] = set()
        stack = list(roots)
        while stack:
            box = stack.pop()
            boxed.update(n.id for n in box.nodes)
            stack.extend(box.children)

        for node in flow.nodes.values():
            if node.id not in boxed:
                GraphvizExporter._add_node(dot, node)
        for box in roots:
            GraphvizExporter._add_box(dot, box)

        for edge in flow.edges:
            dot.edge(edge.source_id, edge.target_id, label=edge.branch_label or "")

        return dot

    @staticmethod
    def to_dot(flow: FlowGraph) -> str:
        """Returns the DOT source string for the flow."""
        return GraphvizExporter.to_digraph(flow).source
