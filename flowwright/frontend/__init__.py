"""
flowwright frontend modules for authoring flows.

- FlowBuilder: Imperative API with branch/loop context managers
"""

from .builder import BranchScope, FlowBuilder

__all__ = [
    "BranchScope",
    "FlowBuilder",
]
