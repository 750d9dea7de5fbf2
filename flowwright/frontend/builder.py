"""Imperative FlowBuilder for manual flow construction."""

from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Tuple

from flowwright.core.ir import (
    FlowGraph, StepNode, StepKind, Edge, TRUE_LABEL, FALSE_LABEL, LOOP_BODY_LABEL,
)
from flowwright.errors import StructuralError

# (source node, label of the edge leaving it)
Tail = Tuple[StepNode, Optional[str]]


class BranchScope:
    """Handle yielded by ``FlowBuilder.branch``; opens the true and false arms."""

    def __init__(self, builder: "FlowBuilder", start: StepNode, end: StepNode):
        self.builder = builder
        self.start = start
        self.end = end
        self.arms = {}

    @contextmanager
    def _arm(self, label: str) -> Iterator[None]:
        if label in self.arms:
            raise StructuralError(f"Branch {self.start.id} already has a '{label}' arm")
        self.builder._tails = [(self.start, label)]
        yield
        self.arms[label] = self.builder._tails
        self.builder._tails = None

    def when_true(self):
        return self._arm(TRUE_LABEL)

    def when_false(self):
        return self._arm(FALSE_LABEL)


class FlowBuilder:
    """
    Imperative API for building flows step by step.

    Each step is wired after the previous one. Branches and loops are context
    managers that create the paired end markers and the labeled edges.

    Example:
        builder = FlowBuilder("Login")
        builder.step("navigate", url="https://example.com/login")
        with builder.branch(selector="#cookie-banner") as banner:
            with banner.when_true():
                builder.step("click", selector="#accept")
        with builder.loop(type="count", count=3):
            builder.step("click", selector=".next")
        flow = builder.build()
    """

    def __init__(self, name: str = "Flow"):
        self.flow = FlowGraph(name)
        self.last_node: Optional[StepNode] = None
        self._tails: Optional[List[Tail]] = []

    def _add(self, kind: str, payload: dict, node_id: Optional[str], label: Optional[str],
             pair_id: Optional[str] = None) -> StepNode:
        node = StepNode(node_id=node_id, kind=kind, payload=payload, pair_id=pair_id, label=label or "")
        self.flow.add_node(node)
        return node

    def _attach(self, node: StepNode) -> None:
        if self._tails is None:
            raise StructuralError("Steps inside a branch must be added under when_true() or when_false()")
        for source, label in self._tails:
            self.flow.add_edge(Edge(source.id, node.id, branch_label=label))
        self._tails = [(node, None)]
        self.last_node = node

    def step(self, kind: Any, node_id: Optional[str] = None, label: Optional[str] = None, **payload: Any) -> StepNode:
        """Add a step after the current position; payload fields are keyword arguments."""
        kind = kind.value if isinstance(kind, StepKind) else kind
        node = self._add(kind, payload, node_id, label)
        self._attach(node)
        return node

    def comment(self, text: str, node_id: Optional[str] = None) -> StepNode:
        return self.step(StepKind.COMMENT, node_id=node_id, text=text)

    @contextmanager
    def branch(self, node_id: Optional[str] = None, label: Optional[str] = None, **condition: Any) -> Iterator[BranchScope]:
        start_id = node_id or f"branch-{len(self.flow)}"
        end = StepNode(node_id=f"{start_id}-end", kind=StepKind.BRANCH_END)
        start = self._add(StepKind.BRANCH.value, condition, start_id, label, pair_id=end.id)
        self._attach(start)
        self.flow.add_node(end)

        scope = BranchScope(self, start, end)
        self._tails = None
        yield scope

        tails: List[Tail] = []
        for arm in (TRUE_LABEL, FALSE_LABEL):
            tails.extend(scope.arms.get(arm, [(start, arm)]))
        self._tails = tails
        self._attach(end)

    @contextmanager
    def loop(self, node_id: Optional[str] = None, label: Optional[str] = None, **spec: Any) -> Iterator[StepNode]:
        start_id = node_id or f"loop-{len(self.flow)}"
        end = StepNode(node_id=f"{start_id}-end", kind=StepKind.LOOP_END)
        start = self._add(StepKind.LOOP.value, spec, start_id, label, pair_id=end.id)
        self._attach(start)
        self.flow.add_node(end)

        self._tails = [(start, LOOP_BODY_LABEL)]
        yield start
        self._attach(end)

    def connect(self, source: StepNode, target: StepNode, label: Optional[str] = None) -> Edge:
        return self.flow.add_edge(Edge(source.id, target.id, branch_label=label))

    def build(self) -> FlowGraph:
        return self.flow
