"""Bounded retry for navigation steps that hit transient network failures."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_DELAY_MS = 1000

# Substrings of driver error messages that indicate a network hiccup
TRANSIENT_SIGNATURES = (
    "net::",
    "NS_ERROR",
    "ERR_",
    "timeout",
    "Timeout",
    "Navigation failed",
    "Target page",
    "Protocol error",
)


def is_transient(exc: BaseException) -> bool:
    message = str(exc)
    return any(signature in message for signature in TRANSIENT_SIGNATURES)


@dataclass
class RetryPolicy:
    attempts: int = DEFAULT_ATTEMPTS
    delay_ms: int = DEFAULT_DELAY_MS


async def retry_transient(
    fn: Callable[[], Awaitable[Any]],
    operation: str,
    *,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Await ``fn()`` up to ``policy.attempts`` times with a fixed delay.

    Only errors matching a transient signature are retried; anything else,
    and the last transient failure, propagates unchanged.
    """
    cfg = policy or RetryPolicy()
    attempts = max(1, cfg.attempts)

    for attempt in range(1, attempts + 1):
        try:
            logger.debug("%s: attempt %d/%d", operation, attempt, attempts)
            return await fn()
        except Exception as exc:
            if attempt >= attempts or not is_transient(exc):
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %d ms",
                operation, attempt, attempts, exc, cfg.delay_ms,
            )
            await sleep(cfg.delay_ms / 1000)
