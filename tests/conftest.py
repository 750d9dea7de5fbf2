import sys
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
sys.path.append(os.path.dirname(__file__))

from complex_flow import create_checkout_flow
from flowwright.config import RunSettings
from flowwright.driver.base import BrowserDriver, Target


class FakeTimeout(Exception):
    """Stands in for the driver's timeout error."""


@dataclass
class FakeElement:
    text: str = ""
    visible: bool = True
    enabled: bool = True
    checked: bool = False
    count: int = 1
    attributes: Dict[str, str] = field(default_factory=dict)


class FakeDriver(BrowserDriver):
    """
    In-memory browser: a dict of selector -> FakeElement per page and per frame.

    ``pages`` maps a URL to the elements that appear once it is loaded;
    ``fail_on`` maps an operation name to an exception raised instead of
    performing it, or to a list consumed one entry per call where None lets
    that call through.
    """

    def __init__(self, elements: Optional[Dict[str, FakeElement]] = None, url: str = "about:blank"):
        self.elements: Dict[str, FakeElement] = dict(elements or {})
        self.frames: Dict[str, Dict[str, FakeElement]] = {}
        self.pages: Dict[str, Dict[str, FakeElement]] = {}
        self.url = url
        self.page_title = "Fake page"
        self.fail_on: Dict[str, Any] = {}
        self.evaluations: Dict[str, Any] = {}
        self.storage: Dict[str, str] = {}
        self.cookies: List[Dict[str, Any]] = []
        self.values: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.tab = 0
        self.started = False
        self.closed = False

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation,) + args)
        failure = self.fail_on.get(operation)
        if isinstance(failure, list):
            # None entries let that call through
            if failure and failure[0] is None:
                failure.pop(0)
            elif failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure

    def called(self, operation: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == operation]

    def _scope(self, target: Target) -> Dict[str, FakeElement]:
        if target.is_page:
            return self.elements
        return self.frames.setdefault(target.selector, {})

    def _find(self, target: Target, selector: str) -> Optional[FakeElement]:
        base, sep, nth = selector.partition(" >> nth=")
        element = self._scope(target).get(base)
        if element is None or element.count == 0:
            return None
        if sep and int(nth) >= element.count:
            return None
        return element

    def _require(self, target: Target, selector: str) -> FakeElement:
        element = self._find(target, selector)
        if element is None:
            raise FakeTimeout(f"Timeout 10000ms exceeded waiting for locator('{selector}')")
        return element

    async def start(self) -> None:
        self._record("start")
        self.started = True

    async def close(self) -> None:
        self._record("close")
        self.closed = True

    # Navigation
    async def goto(self, url: str, timeout_ms: int, wait_until: str = "load") -> None:
        self._record("goto", url)
        self.url = url
        if url in self.pages:
            self.elements = dict(self.pages[url])

    async def go_back(self) -> None:
        self._record("go_back")

    async def go_forward(self) -> None:
        self._record("go_forward")

    async def reload(self, wait_until: str = "load") -> None:
        self._record("reload")

    async def current_url(self) -> str:
        return self.url

    async def title(self) -> str:
        return self.page_title

    # Element actions
    async def click(self, target, selector, timeout_ms, button="left", click_count=1):
        self._record("click", target.name, selector, button, click_count)
        self._require(target, selector)

    async def hover(self, target, selector, timeout_ms):
        self._record("hover", target.name, selector)
        self._require(target, selector)

    async def drag_and_drop(self, target, source, destination, timeout_ms):
        self._record("drag_and_drop", target.name, source, destination)
        self._require(target, source)
        self._require(target, destination)

    async def fill(self, target, selector, value, timeout_ms):
        self._record("fill", target.name, selector, value)
        self._require(target, selector)
        self.values[selector] = value

    async def select_option(self, target, selector, value, timeout_ms):
        self._record("select_option", target.name, selector, value)
        self._require(target, selector)

    async def check(self, target, selector, timeout_ms):
        self._record("check", target.name, selector)
        self._require(target, selector).checked = True

    async def set_input_files(self, target, selector, files, timeout_ms):
        self._record("set_input_files", target.name, selector, files)
        self._require(target, selector)

    async def focus(self, target, selector, timeout_ms):
        self._record("focus", target.name, selector)
        self._require(target, selector)

    async def blur(self, target, selector, timeout_ms):
        self._record("blur", target.name, selector)
        self._require(target, selector)

    async def press(self, key):
        self._record("press", key)

    async def scroll_into_view(self, target, selector, timeout_ms):
        self._record("scroll_into_view", target.name, selector)
        self._require(target, selector)

    async def scroll_by(self, dx, dy):
        self._record("scroll_by", dx, dy)

    # Waits
    async def wait_for_selector(self, target, selector, state, timeout_ms):
        self._record("wait_for_selector", target.name, selector, state)
        element = self._find(target, selector)
        if state == "hidden":
            if element is not None and element.visible:
                raise FakeTimeout(f"Timeout waiting for '{selector}' to be hidden")
        elif element is None:
            raise FakeTimeout(f"Timeout 10000ms exceeded waiting for locator('{selector}')")

    async def wait_for_url(self, pattern, timeout_ms):
        self._record("wait_for_url", pattern)

    async def wait_for_load_state(self, state, timeout_ms):
        self._record("wait_for_load_state", state)

    async def wait_for_response(self, url_fragment, timeout_ms):
        self._record("wait_for_response", url_fragment)

    async def wait_for_request(self, url_fragment, timeout_ms):
        self._record("wait_for_request", url_fragment)

    async def wait_for_function(self, expression, timeout_ms):
        self._record("wait_for_function", expression)

    # Queries
    async def text_content(self, target, selector, timeout_ms):
        self._record("text_content", target.name, selector)
        return self._require(target, selector).text

    async def get_attribute(self, target, selector, name, timeout_ms):
        self._record("get_attribute", target.name, selector, name)
        return self._require(target, selector).attributes.get(name)

    async def count(self, target, selector):
        self._record("count", target.name, selector)
        element = self._scope(target).get(selector)
        return element.count if element is not None else 0

    async def is_visible(self, target, selector):
        element = self._find(target, selector)
        return element is not None and element.visible

    async def is_enabled(self, target, selector):
        element = self._find(target, selector)
        return element is not None and element.enabled

    async def is_checked(self, target, selector):
        element = self._find(target, selector)
        return element is not None and element.checked

    async def element_details(self, target, selector):
        element = self._require(target, selector)
        return {
            "tagName": "DIV",
            "id": "",
            "className": element.attributes.get("class", ""),
            "innerText": element.text[:100],
            "isDisabled": not element.enabled,
            "position": {"x": 0, "y": 0, "width": 100, "height": 20},
        }

    async def evaluate(self, target, expression, arg=None):
        self._record("evaluate", target.name, expression)
        value = self.evaluations.get(expression)
        if isinstance(value, Exception):
            raise value
        return value

    # Page and context
    async def screenshot(self, path=None, full_page=False, image_type="png", quality=None):
        self._record("screenshot", path, full_page)
        data = b"\x89PNG fake"
        if path:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_bytes(data)
        return data

    async def add_cookie(self, name, value, domain=None, path="/", url=None):
        self._record("add_cookie", name, value)
        self.cookies.append({"name": name, "value": value, "domain": domain, "path": path, "url": url})

    async def local_storage(self, action, key=None, value=None):
        self._record("local_storage", action, key)
        if action == "get":
            return self.storage.get(key)
        if action == "set":
            self.storage[key] = value or ""
        elif action == "remove":
            self.storage.pop(key, None)
        else:
            self.storage.clear()
        return None

    async def route(self, url_pattern, action, status=200, body="", content_type=None):
        self._record("route", url_pattern, action, status, body)

    async def handle_dialogs(self, action, prompt_text=None):
        self._record("handle_dialogs", action, prompt_text)

    async def new_page(self, url=None):
        self._record("new_page", url)
        self.tab += 1

    async def switch_tab(self, index):
        self._record("switch_tab", index)
        self.tab = index

    async def download(self, target, trigger_selector, save_dir, timeout_ms):
        self._record("download", target.name, trigger_selector, save_dir)
        self._require(target, trigger_selector)
        return f"{save_dir}/report.csv"


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def run_settings(tmp_path):
    return RunSettings(
        screenshot_dir=tmp_path / "screenshots",
        base_url=None,
        capture_failure_screenshots=False,
        retry_delay_ms=0,
        node_delay_ms=0,
        loop_delay_ms=0,
    )


@pytest.fixture
def sleeps():
    """An injectable sleep that records the requested delays instead of waiting."""
    recorded: List[float] = []

    async def sleep(seconds: float) -> None:
        recorded.append(seconds)

    sleep.calls = recorded
    return sleep


@pytest.fixture
def checkout_flow():
    return create_checkout_flow()
