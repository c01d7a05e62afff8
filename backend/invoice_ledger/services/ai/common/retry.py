"""Bounded exponential backoff around model calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from invoice_ledger.core.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_MARKERS = ("429", "503", "overloaded")


def is_retryable(exc: BaseException) -> bool:
    """True when the error message signals rate limiting or transient overload."""
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


async def invoke_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    operation_name: str = "Model call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await *operation*, retrying up to *max_retries* extra times on transient errors.

    The delay before retry ``k`` is ``initial_delay * 2 ** (k - 1)``. Errors that
    are not retryable propagate immediately; once the bound is reached a
    ``RetryExhaustedError`` carrying the attempt count and the last message is
    raised.
    """
    total_attempts = max_retries + 1
    last_error: Exception | None = None

    for attempt in range(1, total_attempts + 1):
        logger.info("%s attempt %d/%d", operation_name, attempt, total_attempts)
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            if not is_retryable(exc):
                logger.warning("%s failed with non-retryable error: %s", operation_name, exc)
                raise
            if attempt == total_attempts:
                break
            delay = initial_delay * 2 ** (attempt - 1)
            logger.warning(
                "%s attempt %d failed (%s); retrying in %.1fs",
                operation_name,
                attempt,
                exc,
                delay,
            )
            await sleep(delay)

    logger.error("%s gave up after %d attempts", operation_name, total_attempts)
    raise RetryExhaustedError(operation_name, total_attempts, last_error) from last_error
