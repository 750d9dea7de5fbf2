"""
flowwright - Run browser-automation flows and turn them into Playwright code.

Main APIs:
- FlowBuilder: Imperative API for manual flow construction
- JsonSerializer: Load flows saved by the graph editor
- FlowRunner / run_flow: Execute a flow against a live browser session

Backends:
- PythonExporter: pytest-playwright test module
- TypeScriptExporter: Playwright Test spec
- GraphvizExporter: Graphviz DOT source of the flow structure
"""

from flowwright.core.ir import FlowGraph, StepNode, StepKind, Edge
from flowwright.core.analyzer import analyze, analyze_structure, detect_sub_contexts
from flowwright.core.serialization import JsonSerializer
from flowwright.core.validation import validate_graph
from flowwright.frontend import FlowBuilder
from flowwright.engine import FlowRunner, RunResult, RunStatus, StepResult, StepStatus, VariableStore, run_flow
from flowwright.backend import CodeSynthesizer, GraphvizExporter, PythonExporter, TypeScriptExporter, synthesize
from flowwright.errors import (
    FlowwrightError, StructuralError, ConditionError, ExpressionError, ActionError, StepAssertionError,
)

__all__ = [
    # Core IR
    "FlowGraph",
    "StepNode",
    "StepKind",
    "Edge",
    "analyze",
    "analyze_structure",
    "detect_sub_contexts",
    "validate_graph",
    # Serialization
    "JsonSerializer",
    # Frontends
    "FlowBuilder",
    # Engine
    "FlowRunner",
    "RunResult",
    "RunStatus",
    "StepResult",
    "StepStatus",
    "VariableStore",
    "run_flow",
    # Backends
    "CodeSynthesizer",
    "GraphvizExporter",
    "PythonExporter",
    "TypeScriptExporter",
    "synthesize",
    # Errors
    "FlowwrightError",
    "StructuralError",
    "ConditionError",
    "ExpressionError",
    "ActionError",
    "StepAssertionError",
]
