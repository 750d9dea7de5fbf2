"""Evaluation of branch conditions and loop continuation checks."""

import logging
from typing import Union

from flowwright.core.payloads import ConditionSpec
from flowwright.driver.base import BrowserDriver, Target
from flowwright.engine.expressions import evaluate_boolean
from flowwright.engine.variables import VariableStore
from flowwright.errors import ConditionError

logger = logging.getLogger(__name__)


async def check_condition(
    condition: Union[ConditionSpec, str],
    driver: BrowserDriver,
    target: Target,
    variables: VariableStore,
    timeout_ms: int,
) -> bool:
    """
    Evaluate a branch (or while-loop) condition once.

    A plain string is treated as a custom expression. Selector and URL values
    are interpolated with the current variables at the moment of the check.
    """
    if isinstance(condition, str):
        return evaluate_boolean(condition, variables.as_dict())

    if condition.type == "custom":
        if not condition.expression:
            raise ConditionError("Custom condition has no expression")
        return evaluate_boolean(condition.expression, variables.as_dict())

    if condition.type == "url":
        fragment = variables.interpolate(condition.url_fragment)
        current = await driver.current_url()
        return fragment in current

    selector = variables.interpolate(condition.selector or "")
    if not selector:
        raise ConditionError("Selector condition has no selector")

    if condition.comparison == "exists":
        return await driver.count(target, selector) > 0
    if condition.comparison == "visible":
        return await driver.is_visible(target, selector)

    # Text comparisons against a missing element are simply false
    if await driver.count(target, selector) == 0:
        return False
    text = await driver.text_content(target, selector, timeout_ms) or ""
    expected = variables.interpolate(condition.value or "")
    if condition.comparison == "contains":
        return expected in text
    if condition.comparison == "equals":
        return text.strip() == expected.strip()
    raise ConditionError(f"Unknown comparison: {condition.comparison}")
