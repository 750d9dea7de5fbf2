"""
TypeScript backend: ``@playwright/test`` spec files.

Mirrors the output of the visual editor's own code preview: one ``test()``
block, ``let`` declarations for frame handles and external variables, and
template literals where a string references a declared variable.
"""

from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from flowwright.backend.codegen import (
    CodeSynthesizer, Dialect, Lines, UnsupportedStep, Variable,
)
from flowwright.core.analyzer import FlowStructure
from flowwright.core.ir import FlowGraph, StepKind, StepNode
from flowwright.core.payloads import ConditionSpec, LoopSpec
from flowwright.engine.actions import resolve_url


def _single_quoted(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f"'{escaped}'"


def _backtick_piece(text: str) -> str:
    return text.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


_STATE_EXPECTATIONS = {
    StepKind.IS_ENABLED.value: "toBeEnabled",
    StepKind.IS_DISABLED.value: "toBeDisabled",
    StepKind.IS_CHECKED.value: "toBeChecked",
    StepKind.IS_VISIBLE.value: "toBeVisible",
}

_SCROLL_VECTORS = {"down": (0, 1), "up": (0, -1), "right": (1, 0), "left": (-1, 0)}


class TypeScriptDialect(Dialect):
    """Templates for Playwright Test in TypeScript."""

    name = "typescript"
    extension = ".spec.ts"
    indent = "  "
    comment_prefix = "//"
    always_true = "true"

    def comment(self, text: str) -> str:
        return "// " + " ".join(str(text).split())

    def template(self, parts: Sequence[Tuple[bool, str]]) -> str:
        if not any(is_ref for is_ref, _ in parts):
            return _single_quoted("".join(value for _, value in parts))
        pieces = [
            "${" + value + "}" if is_ref else _backtick_piece(value)
            for is_ref, value in parts
        ]
        return "`" + "".join(pieces) + "`"

    def expression(self, text: str) -> str:
        return self.synth.script_expression(text)

    def _text(self, node: StepNode, key: str, default: str = "") -> str:
        value = node.payload.get(key)
        return self.synth.literal(default if value is None else value)

    def _required(self, node: StepNode, key: str) -> str:
        value = node.payload.get(key)
        if value in (None, ""):
            raise ValueError(f"'{key}' is required")
        return self.synth.literal(value)

    def _locator(self, handle: str, node: StepNode, key: str = "selector") -> str:
        return f"{handle}.locator({self._required(node, key)})"

    @staticmethod
    def _timeout_option(node: StepNode) -> str:
        value = node.payload.get("timeout")
        if value in (None, ""):
            return ""
        return f", {{ timeout: {int(value)} }}"

    def _assign(self, node: StepNode, expression: str) -> Lines:
        name = node.payload.get("variableName")
        if not name:
            return [(0, f"console.log({expression});")]
        ident = self.identifier(str(name))
        if self.synth.is_declared(str(name)):
            return [(0, f"{ident} = {expression};")]
        return [(0, f"let {ident} = {expression};")]

    # Document

    def document(self, graph: FlowGraph, variables: List[Variable], structure: FlowStructure,
                 body: List[str]) -> str:
        lines = [
            "import { test, expect } from '@playwright/test';",
            "",
            f"test({_single_quoted(graph.name)}, async ({{ page }}) => {{",
        ]
        if structure.sub_contexts:
            lines.append(f"{self.indent}// Frame handles")
            for ctx in structure.sub_contexts:
                lines.append(f"{self.indent}let {ctx.handle_name};")
            lines.append("")
        if variables:
            lines.append(f"{self.indent}// Variables")
            for var in variables:
                suffix = f" {self.comment(var.description)}" if var.description else ""
                lines.append(f"{self.indent}let {self.identifier(var.name)} = '';{suffix}")
            lines.append("")
        lines.extend(body)
        lines.append("});")
        return "\n".join(lines) + "\n"

    # Control flow

    def condition(self, condition: Union[ConditionSpec, str], handle: str) -> Tuple[Lines, str]:
        if isinstance(condition, str):
            return [], self.expression(condition)

        if condition.type == "custom":
            if not condition.expression:
                raise ValueError("custom condition has no expression")
            return [(0, self.comment("Custom condition"))], self.expression(condition.expression)

        if condition.type == "url":
            fragment = self.synth.literal(condition.url_fragment)
            return [(0, self.comment("Check URL"))], f"page.url().includes({fragment})"

        if not condition.selector:
            raise ValueError("selector condition has no selector")
        locator = f"{handle}.locator({self.synth.literal(condition.selector)})"
        value = self.synth.literal(condition.value or "")
        text = f"((await {locator}.first().textContent()) ?? '')"

        if condition.comparison == "exists":
            return [(0, self.comment("Check if element exists"))], f"(await {locator}.count()) > 0"
        if condition.comparison == "visible":
            return [(0, self.comment("Check if element is visible"))], f"await {locator}.first().isVisible()"
        if condition.comparison == "contains":
            return [(0, self.comment("Check if element contains text"))], f"{text}.includes({value})"
        return [(0, self.comment("Check if element text equals"))], f"{text}.trim() === {value}.trim()"

    def branch_open(self, preamble: Lines, expression: str) -> Lines:
        return list(preamble) + [(0, f"if ({expression}) {{")]

    def branch_else(self) -> Lines:
        return [(0, "} else {")]

    def block_close(self) -> Lines:
        return [(0, "}")]

    def loop_open(self, spec: LoopSpec, handle: str, limit: int) -> Tuple[Lines, Lines, Lines]:
        index = self.identifier(spec.index_variable)

        if spec.type == "count":
            runs = min(spec.count, limit)
            return (
                [(0, self.comment(f"Loop {runs} times")), (0, f"for (let {index} = 0; {index} < {runs}; {index}++) {{")],
                [],
                [],
            )

        if spec.type == "forEach":
            item = self.identifier(spec.item_variable)
            if spec.selector:
                selector = self.synth.literal(spec.selector)
                bound = f"Math.min(await {handle}.locator({selector}).count(), {limit})"
                return (
                    [(0, self.comment("For each matching element")),
                     (0, f"for (let {index} = 0; {index} < {bound}; {index}++) {{")],
                    [(0, f"const {item} = `${{{selector}}} >> nth=${{{index}}}`;")],
                    [],
                )
            items = ", ".join(self.synth.literal(value) for value in spec.item_list()[:limit])
            return (
                [(0, self.comment("For each item")), (0, f"for (const [{index}, {item}] of [{items}].entries()) {{")],
                [],
                [],
            )

        if spec.condition is None or spec.condition == "true":
            test = "true"
        else:
            _, test = self.condition(spec.condition, handle)
        return (
            [(0, self.comment(f"While loop (at most {limit} iterations)")),
             (0, f"for (let {index} = 0; {index} < {limit} && ({test}); {index}++) {{")],
            [],
            [],
        )

    # Steps

    def step(self, node: StepNode, handle: str) -> Lines:
        method = getattr(self, f"_step_{node.kind}", None)
        if method is None:
            raise UnsupportedStep(f"No TypeScript template for step kind '{node.kind}'")
        return method(node, handle)

    def _step_navigate(self, node: StepNode, handle: str) -> Lines:
        url = node.payload.get("url")
        if url and "${" not in str(url):
            url = resolve_url(str(url))
        if not url:
            raise ValueError("'url' is required")
        return [(0, f"await page.goto({self.synth.literal(url)});")]

    def _step_goBack(self, node: StepNode, handle: str) -> Lines:
        return [(0, "await page.goBack();")]

    def _step_goForward(self, node: StepNode, handle: str) -> Lines:
        return [(0, "await page.goForward();")]

    def _step_reload(self, node: StepNode, handle: str) -> Lines:
        return [(0, "await page.reload();")]

    def _step_click(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().click();")]

    def _step_doubleClick(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().dblclick();")]

    def _step_rightClick(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().click({{ button: 'right' }});")]

    def _step_hover(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().hover();")]

    def _step_dragAndDrop(self, node: StepNode, handle: str) -> Lines:
        source = self._locator(handle, node, "sourceSelector")
        target = self._locator(handle, node, "targetSelector")
        return [(0, f"await {source}.first().dragTo({target}.first());")]

    def _step_fill(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().fill({self._text(node, 'value')});")]

    def _step_select(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().selectOption({self._text(node, 'value')});")]

    def _step_check(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().check();")]

    def _step_uploadFile(self, node: StepNode, handle: str) -> Lines:
        raw = str(node.payload.get("filePath") or "")
        files = [part.strip() for part in raw.split(",") if part.strip()]
        if not files:
            raise ValueError("'filePath' is required")
        if len(files) == 1:
            argument = self.synth.literal(files[0])
        else:
            argument = "[" + ", ".join(self.synth.literal(f) for f in files) + "]"
        return [(0, f"await {self._locator(handle, node)}.first().setInputFiles({argument});")]

    def _step_focus(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().focus();")]

    def _step_blur(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await {self._locator(handle, node)}.first().blur();")]

    def _step_keyboard(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await page.keyboard.press({self._required(node, 'key')});")]

    def _step_scroll(self, node: StepNode, handle: str) -> Lines:
        if node.payload.get("selector"):
            return [(0, f"await {self._locator(handle, node)}.first().scrollIntoViewIfNeeded();")]
        direction = node.payload.get("direction", "down")
        if direction not in _SCROLL_VECTORS:
            raise ValueError(f"unknown scroll direction '{direction}'")
        amount = int(node.payload.get("amount") or 100)
        dx, dy = _SCROLL_VECTORS[direction]
        return [(0, f"await page.mouse.wheel({dx * amount}, {dy * amount});")]

    def _step_wait(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await page.waitForTimeout({int(node.payload.get('timeout') or 1000)});")]

    def _step_waitForHidden(self, node: StepNode, handle: str) -> Lines:
        timeout = node.payload.get("timeout")
        options = f"{{ state: 'hidden', timeout: {int(timeout)} }}" if timeout else "{ state: 'hidden' }"
        return [(0, f"await {self._locator(handle, node)}.first().waitFor({options});")]

    def _step_waitForURL(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await page.waitForURL({self._required(node, 'urlPattern')}{self._timeout_option(node)});")]

    def _step_waitForLoadState(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await page.waitForLoadState({self._text(node, 'state', 'networkidle')});")]

    def _step_waitForResponse(self, node: StepNode, handle: str) -> Lines:
        pattern = self._required(node, "urlPattern")
        return [(0, f"await page.waitForResponse(response => response.url().includes({pattern}));")]

    def _step_waitForRequest(self, node: StepNode, handle: str) -> Lines:
        pattern = self._required(node, "urlPattern")
        return [(0, f"await page.waitForRequest(request => request.url().includes({pattern}));")]

    def _step_waitForFunction(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await page.waitForFunction({self._required(node, 'expression')});")]

    def _step_assertion(self, node: StepNode, handle: str) -> Lines:
        element = f"expect({self._locator(handle, node)}.first())"
        comparison = node.payload.get("comparison", "exists")
        expected = self._text(node, "expected")
        if comparison == "exists":
            return [(0, f"await {element}.toBeVisible();")]
        if comparison == "hidden":
            return [(0, f"await {element}.toBeHidden();")]
        if comparison == "contains":
            return [(0, f"await {element}.toContainText({expected});")]
        if comparison == "equals":
            return [(0, f"await {element}.toHaveText({expected});")]
        if comparison == "matches":
            return [(0, f"await {element}.toHaveText(new RegExp({expected}));")]
        if comparison == "hasClass":
            return [(0, f"await {element}.toHaveClass(new RegExp('(^|\\\\s)' + {expected} + '(\\\\s|$)'));")]
        if comparison == "hasAttribute":
            return [(0, f"await {element}.toHaveAttribute({expected});")]
        raise ValueError(f"unknown comparison '{comparison}'")

    def _step_getText(self, node: StepNode, handle: str) -> Lines:
        return self._assign(node, f"await {self._locator(handle, node)}.first().textContent()")

    def _step_getAttribute(self, node: StepNode, handle: str) -> Lines:
        name = self._required(node, "attribute")
        return self._assign(node, f"await {self._locator(handle, node)}.first().getAttribute({name})")

    def _step_getCount(self, node: StepNode, handle: str) -> Lines:
        return self._assign(node, f"await {self._locator(handle, node)}.count()")

    def _check_state(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"await expect({self._locator(handle, node)}.first()).{_STATE_EXPECTATIONS[node.kind]}();")]

    _step_isEnabled = _check_state
    _step_isDisabled = _check_state
    _step_isChecked = _check_state
    _step_isVisible = _check_state

    def _step_newPage(self, node: StepNode, handle: str) -> Lines:
        lines = [(0, "page = await page.context().newPage();")]
        if node.payload.get("url"):
            lines.append((0, f"await page.goto({self._text(node, 'url')});"))
        return lines

    def _step_switchTab(self, node: StepNode, handle: str) -> Lines:
        index = int(node.payload.get("index") or 0)
        return [
            (0, f"page = page.context().pages()[{index}];"),
            (0, "await page.bringToFront();"),
        ]

    def _step_setCookie(self, node: StepNode, handle: str) -> Lines:
        fields = [f"name: {self._required(node, 'name')}", f"value: {self._text(node, 'value')}"]
        if node.payload.get("domain"):
            fields.append(f"domain: {self._text(node, 'domain')}")
            fields.append(f"path: {self._text(node, 'path', '/')}")
        else:
            fields.append("url: page.url()")
        return [(0, "await page.context().addCookies([{ " + ", ".join(fields) + " }]);")]

    def _step_localStorage(self, node: StepNode, handle: str) -> Lines:
        action = node.payload.get("storageAction", "get")
        if action == "clear":
            return [(0, "await page.evaluate(() => localStorage.clear());")]
        if action not in ("get", "set", "remove"):
            raise ValueError(f"unknown localStorage action '{action}'")
        key = self._required(node, "key")
        if action == "set":
            value = self._text(node, "value")
            return [(0, f"await page.evaluate(([key, value]) => localStorage.setItem(key, value), [{key}, {value}]);")]
        if action == "remove":
            return [(0, f"await page.evaluate(key => localStorage.removeItem(key), {key});")]
        return self._assign(node, f"await page.evaluate(key => localStorage.getItem(key), {key})")

    def _step_screenshot(self, node: StepNode, handle: str) -> Lines:
        path = self._text(node, "path", f"screenshots/screenshot-{node.id}.png")
        full_page = "true" if node.payload.get("fullPage", True) else "false"
        return [(0, f"await page.screenshot({{ path: {path}, fullPage: {full_page} }});")]

    def _step_frameEnter(self, node: StepNode, handle: str) -> Lines:
        frame = self.synth.frame_handle(node)
        return [
            (0, self.comment("Switch to iframe")),
            (0, f"{frame} = page.frameLocator({self._text(node, 'selector', 'iframe')});"),
        ]

    def _step_frameExit(self, node: StepNode, handle: str) -> Lines:
        return [(0, self.comment("Exit iframe context; following actions use page again"))]

    def _step_dialog(self, node: StepNode, handle: str) -> Lines:
        action = node.payload.get("dialogAction", "accept")
        if action == "dismiss":
            call = "dialog.dismiss()"
        elif action == "accept" and node.payload.get("promptText"):
            call = f"dialog.accept({self._text(node, 'promptText')})"
        elif action == "accept":
            call = "dialog.accept()"
        else:
            raise ValueError(f"unknown dialog action '{action}'")
        return [
            (0, "page.on('dialog', async dialog => {"),
            (1, "console.log(dialog.message());"),
            (1, f"await {call};"),
            (0, "});"),
        ]

    def _step_download(self, node: StepNode, handle: str) -> Lines:
        trigger = self._locator(handle, node, "triggerSelector")
        directory = self._text(node, "saveDir", "downloads")
        return [
            (0, "{"),
            (1, "const downloadPromise = page.waitForEvent('download');"),
            (1, f"await {trigger}.first().click();"),
            (1, "const download = await downloadPromise;"),
            (1, f"await download.saveAs({directory} + '/' + download.suggestedFilename());"),
            (0, "}"),
        ]

    def _step_networkIntercept(self, node: StepNode, handle: str) -> Lines:
        pattern = self._required(node, "urlPattern")
        action = node.payload.get("interceptAction", "block")
        if action == "mock":
            options = [f"status: {int(node.payload.get('mockStatus') or 200)}", f"body: {self._text(node, 'mockBody')}"]
            if node.payload.get("contentType"):
                options.append(f"contentType: {self._text(node, 'contentType')}")
            call = "route.fulfill({ " + ", ".join(options) + " })"
        elif action == "block":
            call = "route.abort()"
        elif action == "continue":
            call = "route.continue()"
        else:
            raise ValueError(f"unknown intercept action '{action}'")
        return [(0, f"await page.route({pattern}, route => {call});")]

    def _step_customCode(self, node: StepNode, handle: str) -> Lines:
        code = node.payload.get("code")
        if not code:
            return [(0, self.comment("No custom code defined"))]
        lines: Lines = []
        if node.payload.get("description"):
            lines.append((0, self.comment(node.payload["description"])))
        name = node.payload.get("variableName")
        wrapped = node.payload.get("wrapInTryCatch")
        if name:
            # A result is kept by evaluating the code in the page
            target = "page" if handle == "page" else f"{handle}.locator(':root')"
            call = f"await {target}.evaluate({self.synth.literal(str(code))})"
            ident = self.identifier(str(name))
            if wrapped and not self.synth.is_declared(str(name)):
                lines.append((0, f"let {ident};"))
                statement = [(0, f"{ident} = {call};")]
            else:
                statement = self._assign(node, call)
        else:
            statement = [(0, line) for line in str(code).splitlines()]
        if not wrapped:
            return lines + statement
        return lines + [(0, "try {")] + [(depth + 1, text) for depth, text in statement] + [
            (0, "} catch (error) {"),
            (1, "console.error('Custom code error:', error);"),
            (0, "}"),
        ]

    def _step_comment(self, node: StepNode, handle: str) -> Lines:
        text = node.payload.get("text") or node.payload.get("label") or ""
        return [(0, self.comment(line)) for line in str(text).splitlines() if line.strip()]


class TypeScriptExporter:
    """Exports a FlowGraph as a Playwright Test spec."""

    @staticmethod
    def synthesizer(variables: Optional[Iterable[Any]] = None, max_iterations: int = 100) -> CodeSynthesizer:
        return CodeSynthesizer(TypeScriptDialect(), variables=variables, max_iterations=max_iterations)

    @staticmethod
    def to_code(graph: FlowGraph, variables: Optional[Iterable[Any]] = None) -> str:
        """Returns the TypeScript source for the flow."""
        return TypeScriptExporter.synthesizer(variables).synthesize(graph)
