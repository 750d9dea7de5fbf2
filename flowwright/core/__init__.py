"""Core data structures for flowwright flows."""

from .ir import StepKind, StepNode, Edge, FlowGraph
from .analyzer import (
    Group, GroupKind, SubContext, FlowStructure,
    analyze, analyze_structure, detect_sub_contexts, flow_order, group_depth,
)
from .serialization import JsonSerializer
from .validation import validate_graph

__all__ = [
    "StepKind",
    "StepNode",
    "Edge",
    "FlowGraph",
    "Group",
    "GroupKind",
    "SubContext",
    "FlowStructure",
    "analyze",
    "analyze_structure",
    "detect_sub_contexts",
    "flow_order",
    "group_depth",
    "JsonSerializer",
    "validate_graph",
]
