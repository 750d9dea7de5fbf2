"""
BrowserDriver backed by Playwright's async API.

Selectors inside a frame sub-context go through ``page.frame_locator`` so the
frame is resolved lazily, relative to the current top-level page. Element
operations act on the first match of a selector.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from playwright.async_api import (
    Browser, BrowserContext, Dialog, Locator, Page, Playwright, Route, async_playwright,
)

from flowwright.config import RunSettings, settings as default_settings
from flowwright.driver.base import BrowserDriver, Target
from flowwright.errors import ActionError

logger = logging.getLogger(__name__)

# Launch flags for test environments with self-signed certificates and no sandbox
CHROMIUM_ARGS = [
    "--ignore-certificate-errors",
    "--disable-web-security",
    "--allow-insecure-localhost",
    "--no-sandbox",
    "--disable-setuid-sandbox",
]

_ELEMENT_DETAILS_JS = """(el) => {
    const rect = el.getBoundingClientRect();
    return {
        tagName: el.tagName,
        id: el.id,
        className: typeof el.className === 'string' ? el.className : '',
        innerText: (el.innerText || '').substring(0, 100),
        isDisabled: !!el.disabled,
        position: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
    };
}"""

_LOCAL_STORAGE_JS = {
    "get": "(key) => window.localStorage.getItem(key)",
    "set": "([key, value]) => window.localStorage.setItem(key, value)",
    "remove": "(key) => window.localStorage.removeItem(key)",
    "clear": "() => window.localStorage.clear()",
}


class PlaywrightDriver(BrowserDriver):
    """One browser, one context, one active page per run."""

    def __init__(self, settings: Optional[RunSettings] = None):
        self.settings = settings or default_settings
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._dialog_handler = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise ActionError("Browser session has not been started")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise ActionError("Browser session has not been started")
        return self._context

    async def start(self) -> None:
        cfg = self.settings
        self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, cfg.browser, None)
        if browser_type is None:
            raise ActionError(f"Unknown browser '{cfg.browser}'")

        logger.info("Launching %s in %s mode", cfg.browser, "headless" if cfg.headless else "headed")
        launch_args = CHROMIUM_ARGS if cfg.browser == "chromium" else []
        self._browser = await browser_type.launch(headless=cfg.headless, args=launch_args)

        context_options: Dict[str, Any] = {
            "ignore_https_errors": True,
            "viewport": {"width": cfg.viewport_width, "height": cfg.viewport_height},
        }
        if cfg.http_username:
            context_options["http_credentials"] = {
                "username": cfg.http_username,
                "password": cfg.http_password or "",
            }
        self._context = await self._browser.new_context(**context_options)
        self._context.set_default_timeout(cfg.action_timeout_ms)
        self._context.set_default_navigation_timeout(cfg.navigation_timeout_ms)
        self._page = await self._context.new_page()

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = self._context = self._browser = self._playwright = None

    def _scope(self, target: Target):
        if target.is_page:
            return self.page
        return self.page.frame_locator(target.selector)

    def _all(self, target: Target, selector: str) -> Locator:
        return self._scope(target).locator(selector)

    def _first(self, target: Target, selector: str) -> Locator:
        return self._all(target, selector).first

    # Navigation
    async def goto(self, url: str, timeout_ms: int, wait_until: str = "load") -> None:
        await self.page.goto(url, timeout=timeout_ms, wait_until=wait_until)

    async def go_back(self) -> None:
        await self.page.go_back()

    async def go_forward(self) -> None:
        await self.page.go_forward()

    async def reload(self, wait_until: str = "load") -> None:
        await self.page.reload(wait_until=wait_until)

    async def current_url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        return await self.page.title()

    # Element actions
    async def click(self, target: Target, selector: str, timeout_ms: int,
                    button: str = "left", click_count: int = 1) -> None:
        await self._first(target, selector).click(button=button, click_count=click_count, timeout=timeout_ms)

    async def hover(self, target: Target, selector: str, timeout_ms: int) -> None:
        await self._first(target, selector).hover(timeout=timeout_ms)

    async def drag_and_drop(self, target: Target, source: str, destination: str, timeout_ms: int) -> None:
        await self._first(target, source).drag_to(self._first(target, destination), timeout=timeout_ms)

    async def fill(self, target: Target, selector: str, value: str, timeout_ms: int) -> None:
        await self._first(target, selector).fill(value, timeout=timeout_ms)

    async def select_option(self, target: Target, selector: str, value: str, timeout_ms: int) -> None:
        await self._first(target, selector).select_option(value, timeout=timeout_ms)

    async def check(self, target: Target, selector: str, timeout_ms: int) -> None:
        await self._first(target, selector).check(timeout=timeout_ms)

    async def set_input_files(self, target: Target, selector: str, files: Union[str, List[str]],
                              timeout_ms: int) -> None:
        await self._first(target, selector).set_input_files(files, timeout=timeout_ms)

    async def focus(self, target: Target, selector: str, timeout_ms: int) -> None:
        await self._first(target, selector).focus(timeout=timeout_ms)

    async def blur(self, target: Target, selector: str, timeout_ms: int) -> None:
        await self._first(target, selector).blur(timeout=timeout_ms)

    async def press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def scroll_into_view(self, target: Target, selector: str, timeout_ms: int) -> None:
        await self._first(target, selector).scroll_into_view_if_needed(timeout=timeout_ms)

    async def scroll_by(self, dx: int, dy: int) -> None:
        await self.page.evaluate("([dx, dy]) => window.scrollBy(dx, dy)", [dx, dy])

    # Waits
    async def wait_for_selector(self, target: Target, selector: str, state: str, timeout_ms: int) -> None:
        await self._first(target, selector).wait_for(state=state, timeout=timeout_ms)

    async def wait_for_url(self, pattern: str, timeout_ms: int) -> None:
        await self.page.wait_for_url(pattern, timeout=timeout_ms)

    async def wait_for_load_state(self, state: str, timeout_ms: int) -> None:
        await self.page.wait_for_load_state(state, timeout=timeout_ms)

    async def wait_for_response(self, url_fragment: str, timeout_ms: int) -> None:
        await self.page.wait_for_event(
            "response", predicate=lambda response: url_fragment in response.url, timeout=timeout_ms,
        )

    async def wait_for_request(self, url_fragment: str, timeout_ms: int) -> None:
        await self.page.wait_for_event(
            "request", predicate=lambda request: url_fragment in request.url, timeout=timeout_ms,
        )

    async def wait_for_function(self, expression: str, timeout_ms: int) -> None:
        await self.page.wait_for_function(expression, timeout=timeout_ms)

    # Queries
    async def text_content(self, target: Target, selector: str, timeout_ms: int) -> Optional[str]:
        return await self._first(target, selector).text_content(timeout=timeout_ms)

    async def get_attribute(self, target: Target, selector: str, name: str, timeout_ms: int) -> Optional[str]:
        return await self._first(target, selector).get_attribute(name, timeout=timeout_ms)

    async def count(self, target: Target, selector: str) -> int:
        return await self._all(target, selector).count()

    async def is_visible(self, target: Target, selector: str) -> bool:
        return await self._first(target, selector).is_visible()

    async def is_hidden(self, target: Target, selector: str) -> bool:
        return await self._first(target, selector).is_hidden()

    async def is_enabled(self, target: Target, selector: str) -> bool:
        return await self._first(target, selector).is_enabled()

    async def is_disabled(self, target: Target, selector: str) -> bool:
        return await self._first(target, selector).is_disabled()

    async def is_checked(self, target: Target, selector: str) -> bool:
        return await self._first(target, selector).is_checked()

    async def element_details(self, target: Target, selector: str) -> Optional[Dict[str, Any]]:
        return await self._first(target, selector).evaluate(_ELEMENT_DETAILS_JS)

    async def evaluate(self, target: Target, expression: str, arg: Any = None) -> Any:
        if target.is_page:
            return await self.page.evaluate(expression, arg)
        handle = await self.page.locator(target.selector).first.element_handle()
        frame = await handle.content_frame() if handle else None
        if frame is None:
            raise ActionError(f"No frame found for '{target.selector}'")
        return await frame.evaluate(expression, arg)

    # Page and context
    async def screenshot(self, path: Optional[str] = None, full_page: bool = False,
                         image_type: str = "png", quality: Optional[int] = None) -> bytes:
        options: Dict[str, Any] = {"full_page": full_page, "type": image_type}
        if path:
            options["path"] = path
        if image_type == "jpeg" and quality is not None:
            options["quality"] = quality
        return await self.page.screenshot(**options)

    async def add_cookie(self, name: str, value: str, domain: Optional[str] = None,
                         path: str = "/", url: Optional[str] = None) -> None:
        cookie: Dict[str, Any] = {"name": name, "value": value}
        if domain:
            cookie.update(domain=domain, path=path)
        elif url:
            cookie["url"] = url
        else:
            raise ActionError(f"Cookie '{name}' needs a domain or a current page URL")
        await self.context.add_cookies([cookie])

    async def local_storage(self, action: str, key: Optional[str] = None,
                            value: Optional[str] = None) -> Optional[str]:
        script = _LOCAL_STORAGE_JS[action]
        if action == "set":
            await self.page.evaluate(script, [key, value or ""])
            return None
        if action == "clear":
            await self.page.evaluate(script)
            return None
        return await self.page.evaluate(script, key)

    async def route(self, url_pattern: str, action: str, status: int = 200, body: str = "",
                    content_type: Optional[str] = None) -> None:
        async def handle(route: Route) -> None:
            if action == "mock":
                await route.fulfill(status=status, body=body, content_type=content_type)
            elif action == "block":
                await route.abort()
            else:
                await route.continue_()

        await self.page.route(url_pattern, handle)

    async def handle_dialogs(self, action: str, prompt_text: Optional[str] = None) -> None:
        async def handle(dialog: Dialog) -> None:
            logger.info("Dialog (%s): %s", dialog.type, dialog.message)
            if action == "accept" and prompt_text is not None:
                await dialog.accept(prompt_text)
            elif action == "accept":
                await dialog.accept()
            else:
                await dialog.dismiss()

        if self._dialog_handler is not None:
            self.page.remove_listener("dialog", self._dialog_handler)
        self._dialog_handler = handle
        self.page.on("dialog", handle)

    async def new_page(self, url: Optional[str] = None) -> None:
        page = await self.context.new_page()
        if url:
            await page.goto(url)
        self._page = page

    async def switch_tab(self, index: int) -> None:
        pages = self.context.pages
        if index < 0 or index >= len(pages):
            raise ActionError(f"No tab at index {index} ({len(pages)} open)")
        self._page = pages[index]
        await self._page.bring_to_front()

    async def download(self, target: Target, trigger_selector: str, save_dir: str, timeout_ms: int) -> str:
        async with self.page.expect_download(timeout=timeout_ms) as download_info:
            await self._first(target, trigger_selector).click(timeout=timeout_ms)
        download = await download_info.value
        destination = Path(save_dir) / download.suggested_filename
        destination.parent.mkdir(parents=True, exist_ok=True)
        await download.save_as(str(destination))
        return str(destination)
