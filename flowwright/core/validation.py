"""Fail-fast structural checks run before a flow is executed."""

import logging
from collections import deque
from typing import Dict, List

from flowwright.core.ir import (
    FlowGraph, StepNode, StepKind, PAIRED_KINDS, END_KINDS, TRUE_LABEL, FALSE_LABEL,
)
from flowwright.core.payloads import condition_spec, loop_spec
from flowwright.errors import StructuralError

logger = logging.getLogger(__name__)

_BRANCH_LABELS = {None, TRUE_LABEL, FALSE_LABEL}


def _reachable(graph: FlowGraph, start_id: str, target_id: str) -> bool:
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        node_id = queue.popleft()
        for nxt in graph.successors(node_id):
            if nxt == target_id:
                return True
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return False


def _check_pair(graph: FlowGraph, node: StepNode, claimed: Dict[str, str]) -> List[str]:
    expected = PAIRED_KINDS[node.kind]
    if not node.pair_id:
        return [f"{node.kind} node {node.id} has no pairId"]
    end = graph.get_node(node.pair_id)
    if end is None:
        return [f"{node.kind} node {node.id} references missing end node {node.pair_id}"]
    if end.kind != expected:
        return [f"{node.kind} node {node.id} is paired with a '{end.kind}' node, expected '{expected}'"]

    problems = []
    if end.id in claimed:
        problems.append(f"end node {end.id} is shared by {claimed[end.id]} and {node.id}")
    claimed[end.id] = node.id
    if not _reachable(graph, node.id, end.id):
        problems.append(f"end node {end.id} is not reachable from {node.kind} node {node.id}")
    return problems


def _check_branch_edges(graph: FlowGraph, node: StepNode) -> List[str]:
    problems = []
    seen_labels = set()
    for edge in graph.outgoing(node.id):
        label = edge.branch_label
        if label not in _BRANCH_LABELS:
            problems.append(f"branch node {node.id} has an edge labeled '{label}'")
            continue
        if label is not None:
            if label in seen_labels:
                problems.append(f"branch node {node.id} has more than one '{label}' edge")
            seen_labels.add(label)
    return problems


def collect_problems(graph: FlowGraph, strict_kinds: bool = True) -> List[str]:
    """Return a list of human readable structural problems (empty when valid)."""
    problems: List[str] = []
    claimed: Dict[str, str] = {}

    for node in graph.nodes.values():
        if strict_kinds and not node.is_known:
            problems.append(f"node {node.id} has unknown step kind '{node.kind}'")
            continue

        if node.is_control_start:
            problems.extend(_check_pair(graph, node, claimed))
            try:
                if node.kind == StepKind.BRANCH.value:
                    condition_spec(node)
                    problems.extend(_check_branch_edges(graph, node))
                else:
                    loop_spec(node)
            except StructuralError as exc:
                problems.append(str(exc))

    for node in graph.nodes.values():
        if node.kind in END_KINDS and node.id not in claimed:
            logger.warning("End marker %s (%s) is not paired with any start node", node.id, node.kind)

    return problems


def validate_graph(graph: FlowGraph, strict_kinds: bool = True) -> FlowGraph:
    """
    Validate a flow graph, raising StructuralError listing every problem found.

    Args:
        graph: The graph to check
        strict_kinds: If True, unknown step kinds are structural errors

    Returns:
        The same graph, for chaining
    """
    problems = collect_problems(graph, strict_kinds=strict_kinds)
    if problems:
        summary = f"Flow '{graph.name}' is malformed: " + "; ".join(problems)
        raise StructuralError(summary, problems)
    return graph
