"""
Sandboxed evaluation of custom boolean expressions.

Branch conditions of type ``custom`` and ``while`` loop conditions are small
JavaScript-flavoured expressions typed into the editor, e.g.::

    ${title} === 'Dashboard' && ${count} > 2
    ${status}.toLowerCase().includes('ok')

The text is first rewritten into Python syntax (``===`` -> ``==``, ``&&`` ->
``and``, ``true`` -> ``True``...). ``${name}`` outside a string literal
becomes a reference to the variable's value; inside a literal it is
substituted as text. The result is parsed with ``ast`` and evaluated by
walking a whitelist of node types; anything else (calls to arbitrary
functions, attribute access, subscripts, comprehensions...) is rejected.
Nothing is ever passed to ``eval``.
"""

import ast
import operator
from typing import Any, Callable, Dict, Mapping, Tuple

from flowwright.core.templating import substitute
from flowwright.errors import ExpressionError

_JS_LITERALS = {
    "true": "True",
    "false": "False",
    "null": "None",
    "undefined": "None",
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_ARITHMETIC_OPS = {
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_STRING_METHODS = {
    "includes": lambda s, arg: str(arg) in s,
    "startsWith": lambda s, arg: s.startswith(str(arg)),
    "endsWith": lambda s, arg: s.endswith(str(arg)),
    "toLowerCase": lambda s: s.lower(),
    "toUpperCase": lambda s: s.upper(),
    "trim": lambda s: s.strip(),
}


def _read_literal(expression: str, start: int) -> Tuple[str, int]:
    """Decode the string literal starting at ``start``; returns its text and the index after it."""
    quote = expression[start]
    chars = []
    i = start + 1
    while i < len(expression):
        ch = expression[i]
        if ch == "\\" and i + 1 < len(expression):
            nxt = expression[i + 1]
            chars.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise ExpressionError(f"Unterminated string literal in expression: {expression}")


def rewrite(
    expression: str,
    on_reference: Callable[[str], str],
    on_literal: Callable[[str], str],
    translate_operators: bool = True,
) -> str:
    """
    Scan an expression, replacing variable references and string literals.

    ``on_reference(name)`` supplies the source for a ``${name}`` outside a
    string literal, ``on_literal(text)`` the source for a decoded literal.
    With ``translate_operators`` the JavaScript operators and keywords are
    turned into their Python spelling.
    """
    out = []
    i = 0
    n = len(expression)

    while i < n:
        ch = expression[i]

        if ch in "'\"`":
            text, i = _read_literal(expression, i)
            out.append(on_literal(text))
            continue

        if expression.startswith("${", i):
            end = expression.find("}", i)
            if end == -1:
                raise ExpressionError(f"Unterminated variable reference in expression: {expression}")
            out.append(on_reference(expression[i + 2:end].strip()))
            i = end + 1
            continue

        if not translate_operators:
            out.append(ch)
            i += 1
        elif expression.startswith("===", i):
            out.append("==")
            i += 3
        elif expression.startswith("!==", i):
            out.append("!=")
            i += 3
        elif expression.startswith("&&", i):
            out.append(" and ")
            i += 2
        elif expression.startswith("||", i):
            out.append(" or ")
            i += 2
        elif expression.startswith("!=", i):
            out.append("!=")
            i += 2
        elif ch == "!":
            out.append(" not ")
            i += 1
        elif ch.isalpha() or ch == "_":
            j = i
            while j < n and (expression[j].isalnum() or expression[j] == "_"):
                j += 1
            word = expression[i:j]
            out.append(_JS_LITERALS.get(word, word))
            i = j
        else:
            out.append(ch)
            i += 1

    return "".join(out).strip()


def translate(expression: str, variables: Mapping[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite a JavaScript-flavoured expression into Python source for evaluation.

    Returns the source text and the bindings for the placeholders that stand
    in for ``${name}`` references outside string literals.
    """
    bindings: Dict[str, Any] = {}

    def reference(name: str) -> str:
        if name not in variables:
            raise ExpressionError(f"Unknown variable '{name}' in expression: {expression}")
        placeholder = f"_v{len(bindings)}"
        bindings[placeholder] = variables[name]
        return placeholder

    def literal(text: str) -> str:
        return repr(substitute(text, lambda name: variables.get(name)))

    return rewrite(expression, reference, literal), bindings


class _Pythonize(ast.NodeTransformer):
    """Turns the JavaScript string helpers into their Python equivalents."""

    _RENAMED = {
        "startsWith": "startswith",
        "endsWith": "endswith",
        "toLowerCase": "lower",
        "toUpperCase": "upper",
        "trim": "strip",
    }

    def visit_Call(self, node: ast.Call):
        self.generic_visit(node)
        func = node.func
        if not isinstance(func, ast.Attribute):
            return node
        if func.attr == "includes" and len(node.args) == 1:
            return ast.Compare(left=node.args[0], ops=[ast.In()], comparators=[func.value])
        if func.attr in self._RENAMED:
            func.attr = self._RENAMED[func.attr]
        return node

    def visit_Attribute(self, node: ast.Attribute):
        self.generic_visit(node)
        if node.attr == "length":
            return ast.Call(func=ast.Name(id="len", ctx=ast.Load()), args=[node.value], keywords=[])
        return node


def python_source(
    expression: str,
    on_reference: Callable[[str], str],
    on_literal: Callable[[str], str],
) -> str:
    """Translate an expression into standalone Python source text."""
    source = rewrite(expression, on_reference, on_literal)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Cannot parse expression: {expression}") from exc
    tree = ast.fix_missing_locations(_Pythonize().visit(tree))
    return ast.unparse(tree)


def _as_number(value: Any):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _coerce_pair(left: Any, right: Any) -> Tuple[Any, Any]:
    """A number compared with a numeric string is compared as numbers."""
    left_is_num = isinstance(left, (int, float)) and not isinstance(left, bool)
    right_is_num = isinstance(right, (int, float)) and not isinstance(right, bool)
    if left_is_num != right_is_num:
        lnum, rnum = _as_number(left), _as_number(right)
        if lnum is not None and rnum is not None:
            return lnum, rnum
    return left, right


def _to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class _Evaluator:
    def __init__(self, names: Mapping[str, Any], source: str):
        self.names = names
        self.source = source

    def fail(self, message: str):
        return ExpressionError(f"{message} in expression: {self.source}")

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise self.fail(f"Disallowed construct '{type(node).__name__}'")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        if node.value is not None and not isinstance(node.value, (str, int, float, bool)):
            raise self.fail(f"Disallowed constant {node.value!r}")
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.names:
            return self.names[node.id]
        raise self.fail(f"Unknown name '{node.id}'")

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            value = True
            for operand in node.values:
                value = self.visit(operand)
                if not value:
                    return value
            return value
        value = False
        for operand in node.values:
            value = self.visit(operand)
            if value:
                return value
        return value

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        value = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not value
        number = _as_number(value)
        if number is None:
            raise self.fail(f"Unary operator on non-number {value!r}")
        if isinstance(node.op, ast.USub):
            return -number
        if isinstance(node.op, ast.UAdd):
            return number
        raise self.fail("Disallowed unary operator")

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            fn = _COMPARE_OPS.get(type(op))
            if fn is None:
                raise self.fail(f"Disallowed comparison '{type(op).__name__}'")
            right = self.visit(comparator)
            a, b = _coerce_pair(left, right)
            try:
                if not fn(a, b):
                    return False
            except TypeError as exc:
                raise self.fail(f"Cannot compare {a!r} and {b!r}") from exc
            left = right
        return True

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Add):
            if isinstance(left, str) or isinstance(right, str):
                return _to_text(left) + _to_text(right)
            if _as_number(left) is None or _as_number(right) is None:
                raise self.fail(f"Cannot add {left!r} and {right!r}")
            return left + right
        fn = _ARITHMETIC_OPS.get(type(node.op))
        if fn is None:
            raise self.fail(f"Disallowed operator '{type(node.op).__name__}'")
        a, b = _as_number(left), _as_number(right)
        if a is None or b is None:
            raise self.fail(f"Arithmetic on non-numbers {left!r} and {right!r}")
        try:
            return fn(a, b)
        except ZeroDivisionError as exc:
            raise self.fail("Division by zero") from exc

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr != "length":
            raise self.fail(f"Disallowed attribute '{node.attr}'")
        value = self.visit(node.value)
        if not isinstance(value, (str, list, tuple)):
            raise self.fail(f"'length' of non-sequence {value!r}")
        return len(value)

    def visit_Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Attribute) or node.func.attr not in _STRING_METHODS:
            raise self.fail("Only string methods may be called")
        if node.keywords:
            raise self.fail("Keyword arguments are not allowed")
        receiver = self.visit(node.func.value)
        if receiver is None:
            raise self.fail(f"Cannot call '{node.func.attr}' on null")
        args = [self.visit(arg) for arg in node.args]
        try:
            return _STRING_METHODS[node.func.attr](str(receiver), *args)
        except TypeError as exc:
            raise self.fail(f"Wrong arguments for '{node.func.attr}'") from exc


def evaluate_expression(expression: str, variables: Mapping[str, Any]) -> Any:
    """Evaluate ``expression`` against ``variables`` and return its value."""
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError("Empty expression")

    source, bindings = translate(expression, variables)
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Cannot parse expression: {expression}") from exc

    names = dict(variables)
    names.update(bindings)
    return _Evaluator(names, expression).visit(tree)


def evaluate_boolean(expression: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate ``expression`` and reduce the result to its truthiness."""
    return bool(evaluate_expression(expression, variables))
