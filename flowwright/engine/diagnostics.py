"""Failure diagnostics: page state, element state and a best-effort screenshot."""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from flowwright.driver.base import BrowserDriver, Target
from flowwright.engine.results import Diagnostics

logger = logging.getLogger(__name__)

# Payload fields that name the element a step acted on, most specific first
_SELECTOR_FIELDS = ("selector", "sourceSelector", "triggerSelector")


def failing_selector(payload: Dict[str, Any]) -> Optional[str]:
    for name in _SELECTOR_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value:
            return value
    return None


async def collect_diagnostics(
    driver: BrowserDriver,
    target: Target,
    exc: BaseException,
    selector: Optional[str] = None,
) -> Diagnostics:
    """
    Gather what the page looked like when a step failed.

    Every probe is independent: a probe that itself fails leaves its field
    empty (or fills ``selector_error``) without hiding the original error.
    """
    diagnostics = Diagnostics(message=str(exc) or type(exc).__name__, error_type=type(exc).__name__)

    try:
        diagnostics.url = await driver.current_url()
        diagnostics.title = await driver.title()
    except Exception as probe_exc:
        logger.debug("Could not read page state: %s", probe_exc)

    if not selector:
        return diagnostics

    diagnostics.selector = selector
    try:
        diagnostics.element_count = await driver.count(target, selector)
        diagnostics.element_found = diagnostics.element_count > 0
        if diagnostics.element_found:
            diagnostics.element_visible = await driver.is_visible(target, selector)
            diagnostics.element_details = await driver.element_details(target, selector)
    except Exception as probe_exc:
        diagnostics.selector_error = f"Failed to query selector: {probe_exc}"

    return diagnostics


async def capture_failure_screenshot(
    driver: BrowserDriver,
    directory: Path,
    step_id: str,
) -> Optional[str]:
    """Save a full-page screenshot for a failed step; returns its path or None."""
    path = Path(directory) / f"error-{step_id}-{int(time.time() * 1000)}.png"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        await driver.screenshot(path=str(path), full_page=True)
    except Exception as exc:
        logger.warning("Failed to capture error screenshot for %s: %s", step_id, exc)
        return None
    logger.info("Error screenshot saved: %s", path)
    return str(path)
