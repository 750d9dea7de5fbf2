"""
Browser driver interface.

The interpreter talks to the browser exclusively through this surface. A
``Target`` names where a selector is resolved: the top-level page or an
embedded-frame sub-context opened by a frameEnter step. Page-level operations
(navigation, keyboard, cookies, screenshots...) always act on the current
top-level page.

Concrete drivers override what they support; anything left alone raises
NotImplementedError when a flow reaches it.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class Target:
    """Where selectors are resolved: the page, or a frame found by ``selector``."""

    name: str = "page"
    selector: Optional[str] = None

    @property
    def is_page(self) -> bool:
        return self.selector is None


PAGE = Target()


class BrowserDriver:
    """Capability surface the interpreter drives. One instance per run."""

    page_target: Target = PAGE

    def _unsupported(self, operation: str):
        return NotImplementedError(f"{type(self).__name__} does not support '{operation}'")

    # Session lifecycle
    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def enter_frame(self, selector: str, name: str) -> Target:
        """Resolve a frame sub-context. The default is lazy, like a frame locator."""
        return Target(name=name, selector=selector)

    # Navigation
    async def goto(self, url: str, timeout_ms: int, wait_until: str = "load") -> None:
        raise self._unsupported("goto")

    async def go_back(self) -> None:
        raise self._unsupported("go_back")

    async def go_forward(self) -> None:
        raise self._unsupported("go_forward")

    async def reload(self, wait_until: str = "load") -> None:
        raise self._unsupported("reload")

    async def current_url(self) -> str:
        raise self._unsupported("current_url")

    async def title(self) -> str:
        raise self._unsupported("title")

    # Element actions
    async def click(self, target: Target, selector: str, timeout_ms: int,
                    button: str = "left", click_count: int = 1) -> None:
        raise self._unsupported("click")

    async def hover(self, target: Target, selector: str, timeout_ms: int) -> None:
        raise self._unsupported("hover")

    async def drag_and_drop(self, target: Target, source: str, destination: str, timeout_ms: int) -> None:
        raise self._unsupported("drag_and_drop")

    async def fill(self, target: Target, selector: str, value: str, timeout_ms: int) -> None:
        raise self._unsupported("fill")

    async def select_option(self, target: Target, selector: str, value: str, timeout_ms: int) -> None:
        raise self._unsupported("select_option")

    async def check(self, target: Target, selector: str, timeout_ms: int) -> None:
        raise self._unsupported("check")

    async def set_input_files(self, target: Target, selector: str, files: Union[str, List[str]],
                              timeout_ms: int) -> None:
        raise self._unsupported("set_input_files")

    async def focus(self, target: Target, selector: str, timeout_ms: int) -> None:
        raise self._unsupported("focus")

    async def blur(self, target: Target, selector: str, timeout_ms: int) -> None:
        raise self._unsupported("blur")

    async def press(self, key: str) -> None:
        raise self._unsupported("press")

    async def scroll_into_view(self, target: Target, selector: str, timeout_ms: int) -> None:
        raise self._unsupported("scroll_into_view")

    async def scroll_by(self, dx: int, dy: int) -> None:
        raise self._unsupported("scroll_by")

    # Waits
    async def wait_for_selector(self, target: Target, selector: str, state: str, timeout_ms: int) -> None:
        raise self._unsupported("wait_for_selector")

    async def wait_for_url(self, pattern: str, timeout_ms: int) -> None:
        raise self._unsupported("wait_for_url")

    async def wait_for_load_state(self, state: str, timeout_ms: int) -> None:
        raise self._unsupported("wait_for_load_state")

    async def wait_for_response(self, url_fragment: str, timeout_ms: int) -> None:
        raise self._unsupported("wait_for_response")

    async def wait_for_request(self, url_fragment: str, timeout_ms: int) -> None:
        raise self._unsupported("wait_for_request")

    async def wait_for_function(self, expression: str, timeout_ms: int) -> None:
        raise self._unsupported("wait_for_function")

    # Queries
    async def text_content(self, target: Target, selector: str, timeout_ms: int) -> Optional[str]:
        raise self._unsupported("text_content")

    async def get_attribute(self, target: Target, selector: str, name: str, timeout_ms: int) -> Optional[str]:
        raise self._unsupported("get_attribute")

    async def count(self, target: Target, selector: str) -> int:
        raise self._unsupported("count")

    async def is_visible(self, target: Target, selector: str) -> bool:
        raise self._unsupported("is_visible")

    async def is_hidden(self, target: Target, selector: str) -> bool:
        return not await self.is_visible(target, selector)

    async def is_enabled(self, target: Target, selector: str) -> bool:
        raise self._unsupported("is_enabled")

    async def is_disabled(self, target: Target, selector: str) -> bool:
        return not await self.is_enabled(target, selector)

    async def is_checked(self, target: Target, selector: str) -> bool:
        raise self._unsupported("is_checked")

    async def element_details(self, target: Target, selector: str) -> Optional[Dict[str, Any]]:
        """Tag, id, class, text, disabled flag and bounding box of the first match."""
        raise self._unsupported("element_details")

    async def evaluate(self, target: Target, expression: str, arg: Any = None) -> Any:
        raise self._unsupported("evaluate")

    # Page and context
    async def screenshot(self, path: Optional[str] = None, full_page: bool = False,
                         image_type: str = "png", quality: Optional[int] = None) -> bytes:
        raise self._unsupported("screenshot")

    async def add_cookie(self, name: str, value: str, domain: Optional[str] = None,
                         path: str = "/", url: Optional[str] = None) -> None:
        raise self._unsupported("add_cookie")

    async def local_storage(self, action: str, key: Optional[str] = None,
                            value: Optional[str] = None) -> Optional[str]:
        raise self._unsupported("local_storage")

    async def route(self, url_pattern: str, action: str, status: int = 200, body: str = "",
                    content_type: Optional[str] = None) -> None:
        raise self._unsupported("route")

    async def handle_dialogs(self, action: str, prompt_text: Optional[str] = None) -> None:
        raise self._unsupported("handle_dialogs")

    async def new_page(self, url: Optional[str] = None) -> None:
        raise self._unsupported("new_page")

    async def switch_tab(self, index: int) -> None:
        raise self._unsupported("switch_tab")

    async def download(self, target: Target, trigger_selector: str, save_dir: str, timeout_ms: int) -> str:
        raise self._unsupported("download")
