"""
Structure-aware source synthesis.

``CodeSynthesizer`` walks the structure recovered by the analyzer and asks a
``Dialect`` for the text of every construct: a step, the opening and closing
of a branch or loop block, an interpolated string. Group members are emitted
inside their block one level deeper and marked consumed so that no node is
emitted twice, however the groups nest.

Synthesis never raises for a structurally valid graph: unknown kinds and
payloads that cannot be turned into code become placeholder comments, and a
``${name}`` that is not declared stays literal text. Each degradation is
recorded in ``CodeSynthesizer.warnings`` and logged.
"""

import keyword
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from flowwright.core.analyzer import FlowStructure, Group, GroupKind, analyze_structure, order_within
from flowwright.core.ir import FlowGraph, StepKind, StepNode, GET_VALUE_KINDS
from flowwright.core.payloads import ConditionSpec, LoopSpec, condition_spec, loop_spec
from flowwright.core.templating import split_template
from flowwright.engine.expressions import python_source, rewrite
from flowwright.errors import FlowwrightError

logger = logging.getLogger(__name__)

# Steps whose result lands in their variableName
STORING_KINDS = GET_VALUE_KINDS | {StepKind.CUSTOM_CODE.value}

# (relative depth, text)
Lines = List[Tuple[int, str]]


class UnsupportedStep(FlowwrightError):
    """The dialect has no template for a step kind."""


class Variable:
    """An externally declared variable: ``{"name": ..., "description": ...}``."""

    def __init__(self, name: str, description: Optional[str] = None):
        self.name = name
        self.description = description

    @classmethod
    def coerce(cls, value: Union["Variable", Dict[str, Any], str]) -> "Variable":
        if isinstance(value, Variable):
            return value
        if isinstance(value, str):
            return cls(value)
        return cls(str(value["name"]), value.get("description"))


def safe_identifier(name: str) -> str:
    ident = re.sub(r"\W", "_", name.strip()) or "_"
    if ident[0].isdigit():
        ident = f"_{ident}"
    if keyword.iskeyword(ident):
        ident = f"{ident}_"
    return ident


def to_function_name(text: str) -> str:
    """``'Login flow #2'`` -> ``'login_flow_2'``."""
    name = re.sub(r"[^0-9a-zA-Z]+", "_", text).strip("_").lower()
    return name or "flow"


class Dialect:
    """Target-language templates used by ``CodeSynthesizer``."""

    name = "base"
    extension = ""
    indent = "    "
    comment_prefix = "#"
    always_true = "True"

    def __init__(self):
        self.synth: Optional["CodeSynthesizer"] = None

    def bind(self, synth: "CodeSynthesizer") -> None:
        self.synth = synth

    def reset(self) -> None:
        """Forget per-document state before a new synthesis."""

    def identifier(self, name: str) -> str:
        return safe_identifier(name)

    def comment(self, text: str) -> str:
        raise NotImplementedError

    def template(self, parts: Sequence[Tuple[bool, str]]) -> str:
        """String expression for literal parts and ``(True, identifier)`` references."""
        raise NotImplementedError

    def expression(self, text: str) -> str:
        """A custom boolean expression in the target language."""
        raise NotImplementedError

    def document(self, graph: FlowGraph, variables: List[Variable], structure: FlowStructure,
                 body: List[str]) -> str:
        raise NotImplementedError

    def step(self, node: StepNode, handle: str) -> Lines:
        raise NotImplementedError

    def condition(self, condition: Union[ConditionSpec, str], handle: str) -> Tuple[Lines, str]:
        """Preamble lines and the boolean expression for a condition."""
        raise NotImplementedError

    def branch_open(self, preamble: Lines, expression: str) -> Lines:
        raise NotImplementedError

    def branch_else(self) -> Lines:
        raise NotImplementedError

    def block_close(self) -> Lines:
        raise NotImplementedError

    def empty_block(self) -> Lines:
        return []

    def loop_open(self, spec: LoopSpec, handle: str, limit: int) -> Tuple[Lines, Lines, Lines]:
        """Opening lines, first lines of the body and last lines of the body."""
        raise NotImplementedError


class CodeSynthesizer:
    """
    Turns a flow graph into source text in one dialect.

    Example:
        synth = CodeSynthesizer(PythonDialect(), variables=[{"name": "user"}])
        source = synth.synthesize(graph)
        for warning in synth.warnings:
            print(warning)
    """

    def __init__(self, dialect: Dialect, variables: Optional[Iterable[Any]] = None,
                 max_iterations: int = 100):
        self.dialect = dialect
        self.variables = [Variable.coerce(v) for v in (variables or [])]
        self.max_iterations = max_iterations
        self.warnings: List[str] = []
        dialect.bind(self)

        self.graph: Optional[FlowGraph] = None
        self.structure: Optional[FlowStructure] = None
        self._consumed: Set[str] = set()
        self._declared: Set[str] = set()
        self._warned: Set[Tuple[str, str]] = set()
        self._current: Optional[StepNode] = None

    def synthesize(self, graph: FlowGraph) -> str:
        self.graph = graph
        self.structure = analyze_structure(graph)
        self.warnings = []
        self._consumed = set()
        self._warned = set()
        self._declared = {v.name for v in self.variables}
        self.dialect.reset()

        body = self._emit_nodes(self.structure.order, 1)
        return self.dialect.document(graph, self.variables, self.structure, body)

    # Helpers used by dialects

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def is_declared(self, name: str) -> bool:
        return name in self._declared

    def declare(self, name: str) -> None:
        self._declared.add(name)

    def reference(self, name: str) -> Optional[str]:
        """Identifier for a declared variable, None (and a warning) otherwise."""
        if name in self._declared:
            return self.dialect.identifier(name)
        node_id = self._current.id if self._current else "?"
        if (node_id, name) not in self._warned:
            self._warned.add((node_id, name))
            self.warn(f"Variable '${{{name}}}' in step {node_id} is not declared; left as literal text")
        return None

    def literal(self, text: Any) -> str:
        """A string expression for ``text`` with declared ``${name}`` references interpolated."""
        text = "" if text is None else str(text)
        parts: List[Tuple[bool, str]] = []
        for is_ref, value in split_template(text):
            ident = self.reference(value) if is_ref else None
            if ident is not None:
                parts.append((True, ident))
            else:
                parts.append((False, "${" + value + "}" if is_ref else value))
        return self.dialect.template(parts)

    def python_expression(self, text: str) -> str:
        def on_reference(name: str) -> str:
            ident = self.reference(name)
            return ident if ident is not None else repr("${" + name + "}")
        return python_source(text, on_reference, self.literal)

    def script_expression(self, text: str) -> str:
        def on_reference(name: str) -> str:
            ident = self.reference(name)
            return ident if ident is not None else self.dialect.template([(False, "${" + name + "}")])
        return rewrite(text, on_reference, self.literal, translate_operators=False)

    def has_statements(self, lines: List[str]) -> bool:
        prefix = self.dialect.comment_prefix
        return any(line.strip() and not line.strip().startswith(prefix) for line in lines)

    def handle_for(self, node: StepNode) -> str:
        ctx = self.structure.context_of(node.id)
        return ctx.handle_name if ctx else "page"

    def frame_handle(self, node: StepNode) -> str:
        ctx = self.structure.context_entered_by(node.id)
        return ctx.handle_name if ctx else "frame"

    # Walk

    @staticmethod
    def _render(lines: Lines, level: int, indent: str) -> List[str]:
        return [f"{indent * (level + depth)}{text}" if text else "" for depth, text in lines]

    def _emit_nodes(self, nodes: List[StepNode], level: int) -> List[str]:
        out: List[str] = []
        for node in nodes:
            if node.id in self._consumed:
                continue
            self._consumed.add(node.id)
            group = self.structure.group_starting_at(node.id)
            if group is not None:
                out.extend(self._emit_group(group, level))
            elif not node.is_end_marker:
                out.extend(self._render(self._emit_step(node), level, self.dialect.indent))
        return out

    def _placeholder(self, node: StepNode, reason: str) -> Lines:
        self.warn(f"Step {node.id} ({node.kind}): {reason}")
        return [(0, self.dialect.comment(f"{reason} ({node.id}): no code generated"))]

    def _emit_step(self, node: StepNode) -> Lines:
        self._current = node
        if not node.is_known:
            return self._placeholder(node, f"Unsupported step kind '{node.kind}'")
        try:
            lines = self.dialect.step(node, self.handle_for(node))
        except UnsupportedStep as exc:
            return self._placeholder(node, str(exc))
        except (FlowwrightError, KeyError, TypeError, ValueError) as exc:
            return self._placeholder(node, f"Invalid payload ({exc})")
        if node.kind in STORING_KINDS and node.payload.get("variableName"):
            if node.kind != StepKind.LOCAL_STORAGE.value or node.payload.get("storageAction", "get") == "get":
                self.declare(str(node.payload["variableName"]))
        return lines

    def _body(self, nodes: List[StepNode], level: int) -> List[str]:
        pending = [n for n in nodes if n.id not in self._consumed]
        lines = self._emit_nodes(order_within(self.graph, pending), level)
        if not self.has_statements(lines):
            lines = lines + self._render(self.dialect.empty_block(), level, self.dialect.indent)
        return lines

    def _emit_group(self, group: Group, level: int) -> List[str]:
        self._consumed.add(group.end.id)
        self._current = group.start
        indent = self.dialect.indent
        handle = self.handle_for(group.start)
        out: List[str] = []

        if group.kind == GroupKind.BRANCH:
            try:
                preamble, expression = self.dialect.condition(condition_spec(group.start), handle)
            except (FlowwrightError, KeyError, TypeError, ValueError) as exc:
                self.warn(f"Step {group.start.id} (branch): invalid condition ({exc}); emitted as always true")
                preamble = [(0, self.dialect.comment(f"Invalid condition ({group.start.id})"))]
                expression = self.dialect.always_true
            out.extend(self._render(self.dialect.branch_open(preamble, expression), level, indent))
            out.extend(self._body(group.true_nodes or [], level + 1))
            false_nodes = [n for n in (group.false_nodes or []) if n.id not in self._consumed]
            if false_nodes:
                out.extend(self._render(self.dialect.branch_else(), level, indent))
                out.extend(self._body(false_nodes, level + 1))
            out.extend(self._render(self.dialect.block_close(), level, indent))
            return out

        try:
            spec = loop_spec(group.start)
            limit = spec.limit(self.max_iterations)
            self.declare(spec.index_variable)
            if spec.type == "forEach":
                self.declare(spec.item_variable)
            opening, prefix, suffix = self.dialect.loop_open(spec, handle, limit)
        except (FlowwrightError, KeyError, TypeError, ValueError) as exc:
            self.warn(f"Step {group.start.id} (loop): invalid loop ({exc}); body emitted once")
            opening = [(0, self.dialect.comment(f"Invalid loop ({group.start.id}): body runs once"))]
            prefix, suffix = [], []
            out.extend(self._render(opening, level, indent))
            out.extend(self._body(group.inner_nodes, level))
            return out

        out.extend(self._render(opening, level, indent))
        body = self._render(prefix, level + 1, indent) + self._body(group.inner_nodes, level + 1)
        out.extend(body)
        out.extend(self._render(suffix, level + 1, indent))
        out.extend(self._render(self.dialect.block_close(), level, indent))
        return out


def synthesize(
    graph: FlowGraph,
    variables: Optional[Iterable[Any]] = None,
    language: str = "python",
) -> str:
    """Generate source code for ``graph`` in ``language`` (``python`` or ``typescript``)."""
    from flowwright.backend import DIALECTS

    try:
        dialect_cls = DIALECTS[language]
    except KeyError:
        raise ValueError(f"Unknown language: {language}. Use: {', '.join(sorted(DIALECTS))}") from None
    return CodeSynthesizer(dialect_cls(), variables=variables).synthesize(graph)
