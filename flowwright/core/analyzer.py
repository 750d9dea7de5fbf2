"""
Structural analysis of a flow graph.

The editor stores control flow as a flat graph: a ``branch``/``loop`` node and
its end marker (linked through ``pair_id``) delimit a block, and the steps in
between are ordinary nodes connected by edges. This module recovers the
nested structure statically:

- ``analyze`` finds the branch/loop groups and the nodes inside each of them
- ``detect_sub_contexts`` finds the frame sub-context spans
- ``structured_order`` lists the top-level steps in a structure-respecting order

The interpreter does not use any of this; it follows edges live. The code
synthesizers rely on it because generated source must show static blocks.

Example:
    from flowwright.core.analyzer import analyze_structure

    structure = analyze_structure(graph)
    for group in structure.groups:
        print(group.kind, [n.id for n in group.inner_nodes])
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from flowwright.core.ir import (
    FlowGraph, StepNode, StepKind, PAIRED_KINDS, TRUE_LABEL, FALSE_LABEL, LOOP_EXIT_LABEL,
)

logger = logging.getLogger(__name__)


class GroupKind(str, Enum):
    BRANCH = "branch"
    LOOP = "loop"


@dataclass
class Group:
    """A branch or loop block recovered from a start/end marker pair."""

    start: StepNode
    end: StepNode
    kind: GroupKind
    inner_nodes: List[StepNode] = field(default_factory=list)
    true_nodes: Optional[List[StepNode]] = None
    false_nodes: Optional[List[StepNode]] = None

    def member_ids(self) -> Set[str]:
        return {n.id for n in self.inner_nodes}

    def __repr__(self):
        return (
            f"<Group {self.kind.value} {self.start.id}..{self.end.id} "
            f"inner={[n.id for n in self.inner_nodes]}>"
        )


@dataclass
class SubContext:
    """An embedded-frame scope opened by a frameEnter step."""

    enter: StepNode
    index: int
    nodes: List[StepNode] = field(default_factory=list)
    exit: Optional[StepNode] = None

    @property
    def handle_name(self) -> str:
        return f"frame{self.index + 1}"

    def node_ids(self) -> Set[str]:
        return {n.id for n in self.nodes}


@dataclass
class FlowStructure:
    """Everything the synthesizers need to know about a graph's shape."""

    groups: List[Group]
    sub_contexts: List[SubContext]
    order: List[StepNode]

    def group_starting_at(self, node_id: str) -> Optional[Group]:
        for group in self.groups:
            if group.start.id == node_id:
                return group
        return None

    def context_of(self, node_id: str) -> Optional[SubContext]:
        for ctx in self.sub_contexts:
            if any(n.id == node_id for n in ctx.nodes):
                return ctx
        return None

    def context_entered_by(self, node_id: str) -> Optional[SubContext]:
        for ctx in self.sub_contexts:
            if ctx.enter.id == node_id:
                return ctx
        return None


def _collect(graph: FlowGraph, start_ids: Iterable[str], stop_ids: Set[str]) -> List[StepNode]:
    """Breadth-first collection of nodes reachable from ``start_ids`` without crossing ``stop_ids``."""
    result: List[StepNode] = []
    visited: Set[str] = set()
    queue = deque(start_ids)

    while queue:
        node_id = queue.popleft()
        if node_id in visited or node_id in stop_ids:
            continue
        visited.add(node_id)
        node = graph.get_node(node_id)
        if node is None:
            continue
        result.append(node)
        for target in graph.successors(node_id):
            if target not in visited and target not in stop_ids:
                queue.append(target)

    return result


def _branch_entries(graph: FlowGraph, start: StepNode, end: StepNode):
    """Targets of the true and false edges of a branch node (None when absent)."""
    edges = graph.outgoing(start.id)
    true_edge = next((e for e in edges if e.branch_label == TRUE_LABEL), None)
    false_edge = next((e for e in edges if e.branch_label == FALSE_LABEL), None)

    if true_edge is None and false_edge is None:
        # Older flows wired a branch with one plain edge; treat it as the true side.
        unlabeled = [e for e in edges if e.branch_label is None]
        if len(unlabeled) == 1:
            true_edge = unlabeled[0]

    true_target = true_edge.target_id if true_edge and true_edge.target_id != end.id else None
    false_target = false_edge.target_id if false_edge and false_edge.target_id != end.id else None
    return true_target, false_target


def loop_body_targets(graph: FlowGraph, start: StepNode, end_id: Optional[str]) -> List[str]:
    """Targets of a loop node's body edges (every out-edge except the exit edge)."""
    return [
        e.target_id for e in graph.outgoing(start.id)
        if e.branch_label != LOOP_EXIT_LABEL and e.target_id != end_id
    ]


def analyze(graph: FlowGraph) -> List[Group]:
    """
    Recover the branch and loop groups of a graph.

    Start nodes are processed in declaration order. Pairs whose end marker is
    missing or of the wrong kind are skipped with a warning. Nested pairs are
    not removed from the outer group's node sets.

    Returns:
        Groups in the declaration order of their start nodes
    """
    groups: List[Group] = []
    consumed: Set[str] = set()

    for node in graph.nodes.values():
        if not node.is_control_start or node.id in consumed:
            continue

        end = graph.pair_of(node)
        if end is None:
            logger.warning("No end marker found for %s node %s (pairId=%s)", node.kind, node.id, node.pair_id)
            continue
        if end.kind != PAIRED_KINDS[node.kind]:
            logger.warning("End marker %s of %s node %s has kind '%s'", end.id, node.kind, node.id, end.kind)
            continue

        stop = {end.id, node.id}
        if node.kind == StepKind.BRANCH.value:
            true_target, false_target = _branch_entries(graph, node, end)
            true_nodes = _collect(graph, [true_target] if true_target else [], stop)
            false_nodes = _collect(graph, [false_target] if false_target else [], stop)
            true_ids = {n.id for n in true_nodes}
            inner = true_nodes + [n for n in false_nodes if n.id not in true_ids]
            groups.append(Group(
                start=node,
                end=end,
                kind=GroupKind.BRANCH,
                inner_nodes=inner,
                true_nodes=true_nodes,
                false_nodes=false_nodes,
            ))
        else:
            inner = _collect(graph, loop_body_targets(graph, node, end.id), stop)
            groups.append(Group(start=node, end=end, kind=GroupKind.LOOP, inner_nodes=inner))

        consumed.add(node.id)
        consumed.add(end.id)

    return groups


def flow_order(graph: FlowGraph) -> List[StepNode]:
    """Depth-first pre-order from every entry node; unreachable nodes are appended."""
    ordered: List[StepNode] = []
    visited: Set[str] = set()

    for entry in graph.entry_nodes():
        stack = [entry.id]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            ordered.append(graph.nodes[node_id])
            stack.extend(reversed(graph.successors(node_id)))

    ordered.extend(n for n in graph.nodes.values() if n.id not in visited)
    return ordered


def order_within(graph: FlowGraph, nodes: List[StepNode]) -> List[StepNode]:
    """
    Topologically order a subset of nodes using only the edges inside the subset.

    Cycles are broken at the first node in declaration order; anything left
    unvisited keeps its original relative order at the end.
    """
    if not nodes:
        return []

    members = {n.id for n in nodes}
    has_inner_incoming = {
        n.id for n in nodes
        if any(e.source_id in members for e in graph.incoming(n.id))
    }
    starts = [n for n in nodes if n.id not in has_inner_incoming] or [nodes[0]]

    postorder: List[str] = []
    visited: Set[str] = set()
    for start in starts:
        if start.id in visited:
            continue
        visited.add(start.id)
        stack = [(start.id, iter([t for t in graph.successors(start.id) if t in members]))]
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                postorder.append(node_id)
            elif child not in visited:
                visited.add(child)
                stack.append((child, iter([t for t in graph.successors(child) if t in members])))

    ordered = [graph.nodes[i] for i in reversed(postorder)]
    ordered.extend(n for n in nodes if n.id not in visited)
    return ordered


def structured_order(graph: FlowGraph, groups: List[Group]) -> List[StepNode]:
    """
    Top-level steps in a structure-respecting order.

    A group's start node stands for the whole block: its members are skipped
    here (the synthesizer emits them inside the block) and the walk resumes
    after the group's end marker.
    """
    by_start: Dict[str, Group] = {g.start.id: g for g in groups}
    members: Set[str] = set()
    for group in groups:
        members.update(group.member_ids())

    ordered: List[StepNode] = []
    visited: Set[str] = set()

    def walk(entry_id: str) -> None:
        stack = [entry_id]
        while stack:
            node_id = stack.pop()
            if node_id in visited:
                continue
            visited.add(node_id)
            if node_id in members:
                continue

            node = graph.nodes[node_id]
            ordered.append(node)
            group = by_start.get(node_id)
            if group is None:
                stack.extend(reversed(graph.successors(node_id)))
                continue

            visited.add(group.end.id)
            following = graph.successors(group.end.id)
            if group.kind == GroupKind.LOOP:
                following = following + graph.successors(node_id, labels=[LOOP_EXIT_LABEL])
            stack.extend(reversed(following))

    for entry in graph.entry_nodes():
        walk(entry.id)
    for node in graph.nodes.values():
        if node.id not in visited and node.id not in members:
            walk(node.id)

    return ordered


def detect_sub_contexts(graph: FlowGraph) -> List[SubContext]:
    """
    Find frame sub-context spans in flow order.

    A context opened by a frameEnter collects every following step until a
    frameExit or the next frameEnter. A second frameEnter without a
    frameExit silently ends the first context.
    """
    ordered = flow_order(graph)
    contexts: List[SubContext] = []

    for i, node in enumerate(ordered):
        if node.kind != StepKind.FRAME_ENTER.value:
            continue
        ctx = SubContext(enter=node, index=len(contexts))
        for nxt in ordered[i + 1:]:
            if nxt.kind == StepKind.FRAME_EXIT.value:
                ctx.exit = nxt
                break
            if nxt.kind == StepKind.FRAME_ENTER.value:
                break
            ctx.nodes.append(nxt)
        contexts.append(ctx)

    return contexts


def group_depth(groups: List[Group]) -> int:
    """Maximum nesting depth of the given groups (0 when there are none)."""
    by_start = {g.start.id: g for g in groups}
    memo: Dict[str, int] = {}

    def depth(group: Group, active: Set[str]) -> int:
        if group.start.id in memo:
            return memo[group.start.id]
        active = active | {group.start.id}
        children = [
            by_start[n.id] for n in group.inner_nodes
            if n.id in by_start and n.id not in active
        ]
        value = 1 + max((depth(child, active) for child in children), default=0)
        memo[group.start.id] = value
        return value

    return max((depth(g, set()) for g in groups), default=0)


def analyze_structure(graph: FlowGraph) -> FlowStructure:
    """Run every static analysis over ``graph``."""
    groups = analyze(graph)
    return FlowStructure(
        groups=groups,
        sub_contexts=detect_sub_contexts(graph),
        order=structured_order(graph, groups),
    )
