"""
Python backend: pytest-playwright test modules.

The generated module holds one sync test function taking pytest-playwright's
``page`` fixture, plus a ``__main__`` block so the file also runs on its own.
Strings that reference declared variables become f-strings.
"""

import json
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple, Union

from flowwright.backend.codegen import (
    CodeSynthesizer, Dialect, Lines, UnsupportedStep, Variable, to_function_name,
)
from flowwright.core.analyzer import FlowStructure
from flowwright.core.ir import FlowGraph, StepKind, StepNode
from flowwright.core.payloads import ConditionSpec, LoopSpec
from flowwright.engine.actions import resolve_url


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


_STATE_EXPECTATIONS = {
    StepKind.IS_ENABLED.value: "to_be_enabled",
    StepKind.IS_DISABLED.value: "to_be_disabled",
    StepKind.IS_CHECKED.value: "to_be_checked",
    StepKind.IS_VISIBLE.value: "to_be_visible",
}

_SCROLL_VECTORS = {"down": (0, 1), "up": (0, -1), "right": (1, 0), "left": (-1, 0)}

_LOCAL_STORAGE_JS = {
    "get": "(key) => window.localStorage.getItem(key)",
    "set": "([key, value]) => window.localStorage.setItem(key, value)",
    "remove": "(key) => window.localStorage.removeItem(key)",
    "clear": "() => window.localStorage.clear()",
}


class PythonDialect(Dialect):
    """Templates for Playwright's sync Python API."""

    name = "python"
    extension = ".py"
    indent = "    "
    comment_prefix = "#"
    always_true = "True"

    def __init__(self):
        super().__init__()
        self._modules: Set[str] = set()
        self._imports: Set[str] = set()
        self._guards = 0

    def reset(self) -> None:
        self._modules = set()
        self._guards = 0
        self._imports = {"Page", "expect", "sync_playwright"}

    # Text helpers

    def comment(self, text: str) -> str:
        return "# " + " ".join(str(text).split())

    def template(self, parts: Sequence[Tuple[bool, str]]) -> str:
        if not any(is_ref for is_ref, _ in parts):
            return _quote("".join(value for _, value in parts))
        pieces = []
        for is_ref, value in parts:
            if is_ref:
                pieces.append("{" + value + "}")
            else:
                pieces.append(_quote(value)[1:-1].replace("{", "{{").replace("}", "}}"))
        return 'f"' + "".join(pieces) + '"'

    def expression(self, text: str) -> str:
        return self.synth.python_expression(text)

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
    def _timeout_kwarg(node: StepNode) -> str:
        value = node.payload.get("timeout")
        if value in (None, ""):
            return ""
        return f", timeout={int(value)}"

    def _assign(self, node: StepNode, expression: str) -> Lines:
        """Store into ``variableName`` when the step has one, print the value otherwise."""
        name = node.payload.get("variableName")
        if name:
            return [(0, f"{self.identifier(str(name))} = {expression}")]
        return [(0, f"print({expression})")]

    # Document

    def document(self, graph: FlowGraph, variables: List[Variable], structure: FlowStructure,
                 body: List[str]) -> str:
        function = f"test_{to_function_name(graph.name)}"
        lines = [self.comment(f"Generated by flowwright from flow: {graph.name}")]
        if self._modules:
            lines.append("")
            lines.extend(f"import {module}" for module in sorted(self._modules))
        lines.append("")
        lines.append(f"from playwright.sync_api import {', '.join(sorted(self._imports, key=str.lower))}")
        lines.append("")
        lines.append("")
        lines.append(f"def {function}(page: Page) -> None:")

        if variables:
            lines.append(f"{self.indent}{self.comment('Variables')}")
            for var in variables:
                suffix = f"  {self.comment(var.description)}" if var.description else ""
                lines.append(f"{self.indent}{self.identifier(var.name)} = \"\"{suffix}")
            if body:
                lines.append("")

        lines.extend(body)
        if not variables and not self.synth.has_statements(body):
            lines.append(f"{self.indent}pass")

        lines.extend([
            "",
            "",
            'if __name__ == "__main__":',
            "    with sync_playwright() as playwright:",
            "        browser = playwright.chromium.launch(headless=False)",
            "        try:",
            f"            {function}(browser.new_page())",
            "        finally:",
            "            browser.close()",
        ])
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
            return [(0, self.comment("Check URL"))], f"{fragment} in page.url"

        if not condition.selector:
            raise ValueError("selector condition has no selector")
        locator = f"{handle}.locator({self.synth.literal(condition.selector)})"
        value = self.synth.literal(condition.value or "")

        if condition.comparison == "exists":
            return [(0, self.comment("Check if element exists"))], f"{locator}.count() > 0"
        if condition.comparison == "visible":
            return [(0, self.comment("Check if element is visible"))], f"{locator}.first.is_visible()"
        if condition.comparison == "contains":
            return (
                [(0, self.comment("Check if element contains text"))],
                f'{value} in ({locator}.first.text_content() or "")',
            )
        return (
            [(0, self.comment("Check if element text equals"))],
            f'({locator}.first.text_content() or "").strip() == {value}.strip()',
        )

    def branch_open(self, preamble: Lines, expression: str) -> Lines:
        return list(preamble) + [(0, f"if {expression}:")]

    def branch_else(self) -> Lines:
        return [(0, "else:")]

    def block_close(self) -> Lines:
        return []

    def empty_block(self) -> Lines:
        return [(0, "pass")]

    def loop_open(self, spec: LoopSpec, handle: str, limit: int) -> Tuple[Lines, Lines, Lines]:
        index = self.identifier(spec.index_variable)

        if spec.type == "count":
            runs = min(spec.count, limit)
            return [(0, self.comment(f"Loop {runs} times")), (0, f"for {index} in range({runs}):")], [], []

        if spec.type == "forEach":
            item = self.identifier(spec.item_variable)
            if spec.selector:
                selector = self.synth.literal(spec.selector)
                opening = [
                    (0, self.comment("For each matching element")),
                    (0, f"for {index} in range(min({handle}.locator({selector}).count(), {limit})):"),
                ]
                prefix = [(0, f'{item} = {selector} + " >> nth=" + str({index})')]
                return opening, prefix, []
            items = ", ".join(self.synth.literal(value) for value in spec.item_list()[:limit])
            return (
                [(0, self.comment("For each item")), (0, f"for {index}, {item} in enumerate([{items}]):")],
                [],
                [],
            )

        if spec.condition is None or spec.condition == "true":
            test = "True"
        else:
            preamble, test = self.condition(spec.condition, handle)
        # Nested loops may reuse the index name, so the bound has its own counter
        self._guards += 1
        guard = f"_guard_{self._guards}"
        opening = [
            (0, self.comment(f"While loop (at most {limit} iterations)")),
            (0, f"{guard} = 0"),
            (0, f"while {guard} < {limit} and ({test}):"),
        ]
        return opening, [(0, f"{index} = {guard}")], [(0, f"{guard} += 1")]

    # Steps

    def step(self, node: StepNode, handle: str) -> Lines:
        method = getattr(self, f"_step_{node.kind}", None)
        if method is None:
            raise UnsupportedStep(f"No Python template for step kind '{node.kind}'")
        return method(node, handle)

    def _step_navigate(self, node: StepNode, handle: str) -> Lines:
        url = node.payload.get("url")
        if url and "${" not in str(url):
            url = resolve_url(str(url))
        if not url:
            raise ValueError("'url' is required")
        return [(0, f"page.goto({self.synth.literal(url)})")]

    def _step_goBack(self, node: StepNode, handle: str) -> Lines:
        return [(0, "page.go_back()")]

    def _step_goForward(self, node: StepNode, handle: str) -> Lines:
        return [(0, "page.go_forward()")]

    def _step_reload(self, node: StepNode, handle: str) -> Lines:
        return [(0, "page.reload()")]

    def _step_click(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.click()")]

    def _step_doubleClick(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.dblclick()")]

    def _step_rightClick(self, node: StepNode, handle: str) -> Lines:
        return [(0, f'{self._locator(handle, node)}.first.click(button="right")')]

    def _step_hover(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.hover()")]

    def _step_dragAndDrop(self, node: StepNode, handle: str) -> Lines:
        source = self._locator(handle, node, "sourceSelector")
        target = self._locator(handle, node, "targetSelector")
        return [(0, f"{source}.first.drag_to({target}.first)")]

    def _step_fill(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.fill({self._text(node, 'value')})")]

    def _step_select(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.select_option({self._text(node, 'value')})")]

    def _step_check(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.check()")]

    def _step_uploadFile(self, node: StepNode, handle: str) -> Lines:
        raw = str(node.payload.get("filePath") or "")
        files = [part.strip() for part in raw.split(",") if part.strip()]
        if not files:
            raise ValueError("'filePath' is required")
        if len(files) == 1:
            argument = self.synth.literal(files[0])
        else:
            argument = "[" + ", ".join(self.synth.literal(f) for f in files) + "]"
        return [(0, f"{self._locator(handle, node)}.first.set_input_files({argument})")]

    def _step_focus(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.focus()")]

    def _step_blur(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"{self._locator(handle, node)}.first.blur()")]

    def _step_keyboard(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"page.keyboard.press({self._required(node, 'key')})")]

    def _step_scroll(self, node: StepNode, handle: str) -> Lines:
        if node.payload.get("selector"):
            return [(0, f"{self._locator(handle, node)}.first.scroll_into_view_if_needed()")]
        direction = node.payload.get("direction", "down")
        if direction not in _SCROLL_VECTORS:
            raise ValueError(f"unknown scroll direction '{direction}'")
        amount = int(node.payload.get("amount") or 100)
        dx, dy = _SCROLL_VECTORS[direction]
        return [(0, f"page.mouse.wheel({dx * amount}, {dy * amount})")]

    def _step_wait(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"page.wait_for_timeout({int(node.payload.get('timeout') or 1000)})")]

    def _step_waitForHidden(self, node: StepNode, handle: str) -> Lines:
        return [(0, f'{self._locator(handle, node)}.first.wait_for(state="hidden"{self._timeout_kwarg(node)})')]

    def _step_waitForURL(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"page.wait_for_url({self._required(node, 'urlPattern')}{self._timeout_kwarg(node)})")]

    def _step_waitForLoadState(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"page.wait_for_load_state({self._text(node, 'state', 'networkidle')})")]

    def _step_waitForResponse(self, node: StepNode, handle: str) -> Lines:
        pattern = self._required(node, "urlPattern")
        return [(0, f'page.wait_for_event("response", lambda response: {pattern} in response.url)')]

    def _step_waitForRequest(self, node: StepNode, handle: str) -> Lines:
        pattern = self._required(node, "urlPattern")
        return [(0, f'page.wait_for_event("request", lambda request: {pattern} in request.url)')]

    def _step_waitForFunction(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"page.wait_for_function({self._required(node, 'expression')})")]

    def _step_assertion(self, node: StepNode, handle: str) -> Lines:
        element = f"expect({self._locator(handle, node)}.first)"
        comparison = node.payload.get("comparison", "exists")
        expected = self._text(node, "expected")

        if comparison == "exists":
            return [(0, f"{element}.to_be_visible()")]
        if comparison == "hidden":
            return [(0, f"{element}.to_be_hidden()")]
        if comparison == "contains":
            return [(0, f"{element}.to_contain_text({expected})")]
        if comparison == "equals":
            return [(0, f"{element}.to_have_text({expected})")]

        self._modules.add("re")
        if comparison == "matches":
            return [(0, f"{element}.to_have_text(re.compile({expected}))")]
        if comparison == "hasClass":
            pattern = r'"(^|\\s)" + re.escape(' + expected + r') + "(\\s|$)"'
            return [(0, f"{element}.to_have_class(re.compile({pattern}))")]
        if comparison == "hasAttribute":
            return [(0, f'{element}.to_have_attribute({expected}, re.compile(".*"))')]
        raise ValueError(f"unknown comparison '{comparison}'")

    def _step_getText(self, node: StepNode, handle: str) -> Lines:
        return self._assign(node, f"{self._locator(handle, node)}.first.text_content()")

    def _step_getAttribute(self, node: StepNode, handle: str) -> Lines:
        name = self._required(node, "attribute")
        return self._assign(node, f"{self._locator(handle, node)}.first.get_attribute({name})")

    def _step_getCount(self, node: StepNode, handle: str) -> Lines:
        return self._assign(node, f"{self._locator(handle, node)}.count()")

    def _check_state(self, node: StepNode, handle: str) -> Lines:
        return [(0, f"expect({self._locator(handle, node)}.first).{_STATE_EXPECTATIONS[node.kind]}()")]

    _step_isEnabled = _check_state
    _step_isDisabled = _check_state
    _step_isChecked = _check_state
    _step_isVisible = _check_state

    def _step_newPage(self, node: StepNode, handle: str) -> Lines:
        lines = [(0, "page = page.context.new_page()")]
        if node.payload.get("url"):
            lines.append((0, f"page.goto({self._text(node, 'url')})"))
        return lines

    def _step_switchTab(self, node: StepNode, handle: str) -> Lines:
        index = int(node.payload.get("index") or 0)
        return [(0, f"page = page.context.pages[{index}]"), (0, "page.bring_to_front()")]

    def _step_setCookie(self, node: StepNode, handle: str) -> Lines:
        fields = [f'"name": {self._required(node, "name")}', f'"value": {self._text(node, "value")}']
        if node.payload.get("domain"):
            fields.append(f'"domain": {self._text(node, "domain")}')
            fields.append(f'"path": {self._text(node, "path", "/")}')
        else:
            fields.append('"url": page.url')
        return [(0, "page.context.add_cookies([{" + ", ".join(fields) + "}])")]

    def _step_localStorage(self, node: StepNode, handle: str) -> Lines:
        action = node.payload.get("storageAction", "get")
        if action not in _LOCAL_STORAGE_JS:
            raise ValueError(f"unknown localStorage action '{action}'")
        script = _quote(_LOCAL_STORAGE_JS[action])
        if action == "clear":
            return [(0, f"page.evaluate({script})")]
        key = self._required(node, "key")
        if action == "set":
            return [(0, f"page.evaluate({script}, [{key}, {self._text(node, 'value')}])")]
        if action == "remove":
            return [(0, f"page.evaluate({script}, {key})")]
        return self._assign(node, f"page.evaluate({script}, {key})")

    def _step_screenshot(self, node: StepNode, handle: str) -> Lines:
        path = self._text(node, "path", f"screenshots/screenshot-{node.id}.png")
        full_page = "True" if node.payload.get("fullPage", True) else "False"
        return [(0, f"page.screenshot(path={path}, full_page={full_page})")]

    def _step_frameEnter(self, node: StepNode, handle: str) -> Lines:
        frame = self.synth.frame_handle(node)
        return [(0, f"{frame} = page.frame_locator({self._text(node, 'selector', 'iframe')})")]

    def _step_frameExit(self, node: StepNode, handle: str) -> Lines:
        return [(0, self.comment("Leave the frame; following steps use page"))]

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
        return [(0, f'page.on("dialog", lambda dialog: {call})')]

    def _step_download(self, node: StepNode, handle: str) -> Lines:
        trigger = self._locator(handle, node, "triggerSelector")
        directory = self._text(node, "saveDir", "downloads")
        return [
            (0, "with page.expect_download() as download_info:"),
            (1, f"{trigger}.first.click()"),
            (0, "download = download_info.value"),
            (0, f'download.save_as({directory} + "/" + download.suggested_filename)'),
        ]

    def _step_networkIntercept(self, node: StepNode, handle: str) -> Lines:
        pattern = self._required(node, "urlPattern")
        action = node.payload.get("interceptAction", "block")
        if action == "mock":
            options = [f"status={int(node.payload.get('mockStatus') or 200)}", f"body={self._text(node, 'mockBody')}"]
            if node.payload.get("contentType"):
                options.append(f"content_type={self._text(node, 'contentType')}")
            call = f"route.fulfill({', '.join(options)})"
        elif action == "block":
            call = "route.abort()"
        elif action == "continue":
            call = "route.continue_()"
        else:
            raise ValueError(f"unknown intercept action '{action}'")
        return [(0, f"page.route({pattern}, lambda route: {call})")]

    def _step_customCode(self, node: StepNode, handle: str) -> Lines:
        code = node.payload.get("code")
        if not code:
            return [(0, self.comment("No custom code defined"))]
        target = "page" if handle == "page" else f'{handle}.locator(":root")'
        call = f"{target}.evaluate({_quote(str(code))})"
        lines: Lines = []
        if node.payload.get("description"):
            lines.append((0, self.comment(node.payload["description"])))
        name = node.payload.get("variableName")
        statement = self._assign(node, call) if name else [(0, call)]
        if not node.payload.get("wrapInTryCatch"):
            return lines + statement
        self._imports.add("Error")
        # Bound before the try so later steps can read it after a failure
        if name and not self.synth.is_declared(str(name)):
            lines.append((0, f"{self.identifier(str(name))} = None"))
        return lines + [(0, "try:")] + [(depth + 1, text) for depth, text in statement] + [
            (0, "except Error as exc:"),
            (1, 'print(f"Custom code error: {exc}")'),
        ]

    def _step_comment(self, node: StepNode, handle: str) -> Lines:
        text = node.payload.get("text") or node.payload.get("label") or ""
        return [(0, self.comment(line)) for line in str(text).splitlines() if line.strip()]


class PythonExporter:
    """Exports a FlowGraph as a pytest-playwright test module."""

    @staticmethod
    def synthesizer(variables: Optional[Iterable[Any]] = None, max_iterations: int = 100) -> CodeSynthesizer:
        return CodeSynthesizer(PythonDialect(), variables=variables, max_iterations=max_iterations)

    @staticmethod
    def to_code(graph: FlowGraph, variables: Optional[Iterable[Any]] = None) -> str:
        """Returns the Python source for the flow."""
        return PythonExporter.synthesizer(variables).synthesize(graph)
