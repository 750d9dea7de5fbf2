"""
Handlers for ordinary (non control-flow) steps.

Each handler receives the run's ``ExecutionContext`` and the node, reads its
payload (interpolating ``${name}`` references at the moment of use) and drives
the browser through the ``BrowserDriver`` surface. Handlers raise on failure;
the runner records the failure and aborts the run.
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urljoin

from flowwright.config import RunSettings
from flowwright.core.ir import StepKind, StepNode
from flowwright.driver.base import BrowserDriver, Target
from flowwright.engine.results import StepResult
from flowwright.engine.retry import RetryPolicy, retry_transient
from flowwright.engine.variables import VariableStore
from flowwright.errors import ActionError, StepAssertionError

logger = logging.getLogger(__name__)

_IPV4_PREFIX = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}")


def resolve_url(url: str, base_url: Optional[str] = None) -> str:
    """
    Turn the URL typed into a navigate step into an absolute one.

    Absolute http(s) URLs are kept, bare IPv4 addresses get ``http://``,
    other values are joined onto ``base_url`` when one is configured and
    prefixed with ``http://`` otherwise.
    """
    if not url:
        raise ActionError("Navigate step has no URL")
    if url.startswith("http://") or url.startswith("https://"):
        return url
    if _IPV4_PREFIX.match(url):
        return f"http://{url}"
    if base_url:
        return urljoin(base_url, url)
    return f"http://{url}"


class ExecutionContext:
    """Mutable state shared by the steps of one run."""

    def __init__(
        self,
        driver: BrowserDriver,
        variables: VariableStore,
        settings: RunSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.driver = driver
        self.variables = variables
        self.settings = settings
        self.sleep = sleep
        self.target: Target = driver.page_target
        self.frame_count = 0
        self.retry_policy = RetryPolicy(attempts=settings.retry_attempts, delay_ms=settings.retry_delay_ms)
        self.step: Optional[StepResult] = None

    def text(self, payload: Dict[str, Any], key: str, default: str = "") -> str:
        value = payload.get(key)
        if value is None:
            return default
        return self.variables.interpolate(str(value))

    def require(self, node: StepNode, key: str) -> str:
        value = self.text(node.payload, key)
        if not value:
            raise ActionError(f"{node.kind} step {node.id} requires '{key}'")
        return value

    def timeout(self, payload: Dict[str, Any], default: Optional[int] = None) -> int:
        value = payload.get("timeout")
        if value in (None, ""):
            return default if default is not None else self.settings.action_timeout_ms
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ActionError(f"Invalid timeout {value!r}") from exc

    def store(self, node: StepNode, value: Any) -> None:
        """Write a get-value result to the step's ``variableName``, if it has one."""
        name = node.payload.get("variableName")
        if name:
            self.variables.set(str(name), value)


Handler = Callable[[ExecutionContext, StepNode], Awaitable[None]]

ACTIONS: Dict[str, Handler] = {}


def action(*kinds: StepKind):
    def register(fn: Handler) -> Handler:
        for kind in kinds:
            ACTIONS[kind.value] = fn
        return fn
    return register


async def execute_action(ctx: ExecutionContext, node: StepNode) -> None:
    handler = ACTIONS.get(node.kind)
    if handler is None:
        raise ActionError(f"No handler for step kind '{node.kind}'")
    await handler(ctx, node)


# Navigation

@action(StepKind.NAVIGATE)
async def _navigate(ctx: ExecutionContext, node: StepNode) -> None:
    url = resolve_url(ctx.text(node.payload, "url"), ctx.settings.base_url)
    wait_until = node.payload.get("waitUntil", "networkidle")
    timeout = ctx.timeout(node.payload, ctx.settings.navigation_timeout_ms)
    logger.info("Navigating to %s", url)
    await retry_transient(
        lambda: ctx.driver.goto(url, timeout, wait_until=wait_until),
        f"Navigate to {url}",
        policy=ctx.retry_policy,
        sleep=ctx.sleep,
    )


@action(StepKind.GO_BACK)
async def _go_back(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.go_back()


@action(StepKind.GO_FORWARD)
async def _go_forward(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.go_forward()


@action(StepKind.RELOAD)
async def _reload(ctx: ExecutionContext, node: StepNode) -> None:
    wait_until = node.payload.get("waitUntil", "networkidle")
    await retry_transient(
        lambda: ctx.driver.reload(wait_until=wait_until),
        "Reload page",
        policy=ctx.retry_policy,
        sleep=ctx.sleep,
    )


# Mouse

_CLICK_OPTIONS = {
    StepKind.CLICK.value: ("left", 1),
    StepKind.DOUBLE_CLICK.value: ("left", 2),
    StepKind.RIGHT_CLICK.value: ("right", 1),
}


@action(StepKind.CLICK, StepKind.DOUBLE_CLICK, StepKind.RIGHT_CLICK)
async def _click(ctx: ExecutionContext, node: StepNode) -> None:
    button, click_count = _CLICK_OPTIONS[node.kind]
    await ctx.driver.click(
        ctx.target, ctx.require(node, "selector"), ctx.timeout(node.payload),
        button=button, click_count=click_count,
    )


@action(StepKind.HOVER)
async def _hover(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.hover(ctx.target, ctx.require(node, "selector"), ctx.timeout(node.payload))


@action(StepKind.DRAG_AND_DROP)
async def _drag_and_drop(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.drag_and_drop(
        ctx.target,
        ctx.require(node, "sourceSelector"),
        ctx.require(node, "targetSelector"),
        ctx.timeout(node.payload),
    )


# Input

@action(StepKind.FILL)
async def _fill(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.fill(
        ctx.target, ctx.require(node, "selector"), ctx.text(node.payload, "value"), ctx.timeout(node.payload),
    )


@action(StepKind.SELECT)
async def _select(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.select_option(
        ctx.target, ctx.require(node, "selector"), ctx.text(node.payload, "value"), ctx.timeout(node.payload),
    )


@action(StepKind.CHECK)
async def _check(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.check(ctx.target, ctx.require(node, "selector"), ctx.timeout(node.payload))


@action(StepKind.UPLOAD_FILE)
async def _upload_file(ctx: ExecutionContext, node: StepNode) -> None:
    raw = ctx.require(node, "filePath")
    files = [part.strip() for part in raw.split(",") if part.strip()]
    await ctx.driver.set_input_files(
        ctx.target, ctx.require(node, "selector"), files[0] if len(files) == 1 else files,
        ctx.timeout(node.payload),
    )
    logger.info("File uploaded: %s", raw)


@action(StepKind.FOCUS)
async def _focus(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.focus(ctx.target, ctx.require(node, "selector"), ctx.timeout(node.payload))


@action(StepKind.BLUR)
async def _blur(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.blur(ctx.target, ctx.require(node, "selector"), ctx.timeout(node.payload))


# Keyboard & scroll

@action(StepKind.KEYBOARD)
async def _keyboard(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.press(ctx.require(node, "key"))


_SCROLL_VECTORS = {"down": (0, 1), "up": (0, -1), "right": (1, 0), "left": (-1, 0)}


@action(StepKind.SCROLL)
async def _scroll(ctx: ExecutionContext, node: StepNode) -> None:
    selector = ctx.text(node.payload, "selector")
    if selector:
        await ctx.driver.scroll_into_view(ctx.target, selector, ctx.timeout(node.payload))
        return
    direction = node.payload.get("direction", "down")
    if direction not in _SCROLL_VECTORS:
        raise ActionError(f"Unknown scroll direction '{direction}'")
    amount = int(node.payload.get("amount") or 100)
    dx, dy = _SCROLL_VECTORS[direction]
    await ctx.driver.scroll_by(dx * amount, dy * amount)


# Waits

@action(StepKind.WAIT)
async def _wait(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.sleep(ctx.timeout(node.payload, 1000) / 1000)


@action(StepKind.WAIT_FOR_HIDDEN)
async def _wait_for_hidden(ctx: ExecutionContext, node: StepNode) -> None:
    selector = ctx.require(node, "selector")
    await ctx.driver.wait_for_selector(ctx.target, selector, "hidden", ctx.timeout(node.payload))
    logger.info("Element is now hidden: %s", selector)


@action(StepKind.WAIT_FOR_URL)
async def _wait_for_url(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.wait_for_url(
        ctx.require(node, "urlPattern"), ctx.timeout(node.payload, ctx.settings.navigation_timeout_ms),
    )


@action(StepKind.WAIT_FOR_LOAD_STATE)
async def _wait_for_load_state(ctx: ExecutionContext, node: StepNode) -> None:
    state = ctx.text(node.payload, "state", "networkidle")
    await ctx.driver.wait_for_load_state(state, ctx.timeout(node.payload, ctx.settings.navigation_timeout_ms))


@action(StepKind.WAIT_FOR_RESPONSE)
async def _wait_for_response(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.wait_for_response(
        ctx.require(node, "urlPattern"), ctx.timeout(node.payload, ctx.settings.navigation_timeout_ms),
    )


@action(StepKind.WAIT_FOR_REQUEST)
async def _wait_for_request(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.wait_for_request(
        ctx.require(node, "urlPattern"), ctx.timeout(node.payload, ctx.settings.navigation_timeout_ms),
    )


@action(StepKind.WAIT_FOR_FUNCTION)
async def _wait_for_function(ctx: ExecutionContext, node: StepNode) -> None:
    await ctx.driver.wait_for_function(ctx.require(node, "expression"), ctx.timeout(node.payload))


# Assertions & get-value

@action(StepKind.ASSERTION)
async def _assert_element(ctx: ExecutionContext, node: StepNode) -> None:
    payload = node.payload
    selector = ctx.require(node, "selector")
    comparison = payload.get("comparison", "exists")
    expected = ctx.text(payload, "expected")

    if comparison == "hidden":
        if not await ctx.driver.is_hidden(ctx.target, selector):
            raise StepAssertionError(f"Element is not hidden: {selector}")
        return

    await ctx.driver.wait_for_selector(ctx.target, selector, "attached", ctx.timeout(payload))

    if comparison == "exists":
        if not await ctx.driver.is_visible(ctx.target, selector):
            raise StepAssertionError(f"Element is not visible: {selector}")
    elif comparison == "contains":
        text = await ctx.driver.text_content(ctx.target, selector, ctx.timeout(payload)) or ""
        if expected not in text:
            raise StepAssertionError(f'Text "{expected}" not found in element: {selector}')
    elif comparison == "equals":
        text = await ctx.driver.text_content(ctx.target, selector, ctx.timeout(payload)) or ""
        if text.strip() != expected.strip():
            raise StepAssertionError(f'Text mismatch. Expected: "{expected}", Got: "{text}"')
    elif comparison == "matches":
        text = await ctx.driver.text_content(ctx.target, selector, ctx.timeout(payload)) or ""
        try:
            matched = re.search(expected, text) is not None
        except re.error as exc:
            raise ActionError(f"Invalid pattern {expected!r}: {exc}") from exc
        if not matched:
            raise StepAssertionError(f'Text "{text}" does not match pattern "{expected}"')
    elif comparison == "hasClass":
        classes = await ctx.driver.get_attribute(ctx.target, selector, "class", ctx.timeout(payload)) or ""
        if expected not in classes.split():
            raise StepAssertionError(f'Element does not have class "{expected}". Classes: {classes}')
    elif comparison == "hasAttribute":
        value = await ctx.driver.get_attribute(ctx.target, selector, expected, ctx.timeout(payload))
        if value is None:
            raise StepAssertionError(f'Element does not have attribute: "{expected}"')
    else:
        raise ActionError(f"Unknown comparison: {comparison}")
    logger.info("Assertion %s passed for %s", comparison, selector)


@action(StepKind.GET_TEXT)
async def _get_text(ctx: ExecutionContext, node: StepNode) -> None:
    text = await ctx.driver.text_content(ctx.target, ctx.require(node, "selector"), ctx.timeout(node.payload))
    logger.info("Text content: %s", text)
    ctx.store(node, text or "")


@action(StepKind.GET_ATTRIBUTE)
async def _get_attribute(ctx: ExecutionContext, node: StepNode) -> None:
    name = ctx.require(node, "attribute")
    value = await ctx.driver.get_attribute(ctx.target, ctx.require(node, "selector"), name, ctx.timeout(node.payload))
    logger.info("Attribute %s: %s", name, value)
    ctx.store(node, value)


@action(StepKind.GET_COUNT)
async def _get_count(ctx: ExecutionContext, node: StepNode) -> None:
    count = await ctx.driver.count(ctx.target, ctx.require(node, "selector"))
    logger.info("Count: %d", count)
    ctx.store(node, count)


_STATE_CHECKS = {
    StepKind.IS_ENABLED.value: ("is_enabled", "enabled"),
    StepKind.IS_DISABLED.value: ("is_disabled", "disabled"),
    StepKind.IS_CHECKED.value: ("is_checked", "checked"),
    StepKind.IS_VISIBLE.value: ("is_visible", "visible"),
}


@action(StepKind.IS_ENABLED, StepKind.IS_DISABLED, StepKind.IS_CHECKED, StepKind.IS_VISIBLE)
async def _check_state(ctx: ExecutionContext, node: StepNode) -> None:
    method, state = _STATE_CHECKS[node.kind]
    selector = ctx.require(node, "selector")
    await ctx.driver.wait_for_selector(ctx.target, selector, "attached", ctx.timeout(node.payload))
    if not await getattr(ctx.driver, method)(ctx.target, selector):
        raise StepAssertionError(f"Element is not {state}: {selector}")
    ctx.store(node, True)


# Browser

@action(StepKind.NEW_PAGE)
async def _new_page(ctx: ExecutionContext, node: StepNode) -> None:
    url = ctx.text(node.payload, "url")
    await ctx.driver.new_page(resolve_url(url, ctx.settings.base_url) if url else None)
    ctx.target = ctx.driver.page_target


@action(StepKind.SWITCH_TAB)
async def _switch_tab(ctx: ExecutionContext, node: StepNode) -> None:
    try:
        index = int(node.payload.get("index") or 0)
    except (TypeError, ValueError) as exc:
        raise ActionError(f"Invalid tab index {node.payload.get('index')!r}") from exc
    await ctx.driver.switch_tab(index)
    ctx.target = ctx.driver.page_target


@action(StepKind.SET_COOKIE)
async def _set_cookie(ctx: ExecutionContext, node: StepNode) -> None:
    domain = ctx.text(node.payload, "domain") or None
    url = None if domain else await ctx.driver.current_url()
    await ctx.driver.add_cookie(
        ctx.require(node, "name"),
        ctx.text(node.payload, "value"),
        domain=domain,
        path=ctx.text(node.payload, "path", "/"),
        url=url,
    )


@action(StepKind.LOCAL_STORAGE)
async def _local_storage(ctx: ExecutionContext, node: StepNode) -> None:
    storage_action = node.payload.get("storageAction", "get")
    if storage_action not in ("get", "set", "remove", "clear"):
        raise ActionError(f"Unknown localStorage action '{storage_action}'")
    key = ctx.text(node.payload, "key") or None
    if storage_action != "clear" and not key:
        raise ActionError(f"localStorage {storage_action} requires 'key'")
    value = await ctx.driver.local_storage(storage_action, key, ctx.text(node.payload, "value"))
    if storage_action == "get":
        ctx.store(node, value)


# Advanced

@action(StepKind.SCREENSHOT)
async def _screenshot(ctx: ExecutionContext, node: StepNode) -> None:
    path = ctx.text(node.payload, "path")
    if not path:
        path = str(Path(ctx.settings.screenshot_dir) / f"screenshot-{int(time.time() * 1000)}.png")
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    await ctx.driver.screenshot(path=path, full_page=bool(node.payload.get("fullPage", True)))
    if ctx.step is not None:
        ctx.step.screenshot = path
    logger.info("Screenshot saved: %s", path)


@action(StepKind.FRAME_ENTER)
async def _frame_enter(ctx: ExecutionContext, node: StepNode) -> None:
    # A second frameEnter replaces the active frame; frames resolve from the page
    ctx.frame_count += 1
    selector = ctx.text(node.payload, "selector", "iframe")
    ctx.target = await ctx.driver.enter_frame(selector, f"frame{ctx.frame_count}")
    logger.info("Switched to frame %s", selector)


@action(StepKind.FRAME_EXIT)
async def _frame_exit(ctx: ExecutionContext, node: StepNode) -> None:
    ctx.target = ctx.driver.page_target


@action(StepKind.DIALOG)
async def _dialog(ctx: ExecutionContext, node: StepNode) -> None:
    dialog_action = node.payload.get("dialogAction", "accept")
    if dialog_action not in ("accept", "dismiss"):
        raise ActionError(f"Unknown dialog action '{dialog_action}'")
    await ctx.driver.handle_dialogs(dialog_action, ctx.text(node.payload, "promptText") or None)


@action(StepKind.DOWNLOAD)
async def _download(ctx: ExecutionContext, node: StepNode) -> None:
    saved = await ctx.driver.download(
        ctx.target,
        ctx.require(node, "triggerSelector"),
        ctx.text(node.payload, "saveDir", "downloads"),
        ctx.timeout(node.payload, ctx.settings.navigation_timeout_ms),
    )
    logger.info("Download saved: %s", saved)
    ctx.store(node, saved)


@action(StepKind.NETWORK_INTERCEPT)
async def _network_intercept(ctx: ExecutionContext, node: StepNode) -> None:
    intercept_action = node.payload.get("interceptAction", "block")
    if intercept_action not in ("mock", "block", "continue"):
        raise ActionError(f"Unknown intercept action '{intercept_action}'")
    await ctx.driver.route(
        ctx.require(node, "urlPattern"),
        intercept_action,
        status=int(node.payload.get("mockStatus") or 200),
        body=ctx.text(node.payload, "mockBody"),
        content_type=node.payload.get("contentType"),
    )


@action(StepKind.CUSTOM_CODE)
async def _custom_code(ctx: ExecutionContext, node: StepNode) -> None:
    code = ctx.require(node, "code")
    try:
        value = await ctx.driver.evaluate(ctx.target, code)
    except Exception as exc:
        if not node.payload.get("wrapInTryCatch"):
            raise
        logger.warning("Custom code in %s failed: %s", node.id, exc)
        return
    ctx.store(node, value)
