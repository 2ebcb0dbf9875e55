"""Bounded exponential-backoff retries for calls into inference services."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from coderag.errors import InferenceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number *attempt* (1-based): ``base * 2**(attempt-1)``, capped."""
    return min(cap, base * (2 ** (attempt - 1)))


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    backoff_base: float,
    backoff_max: float,
    label: str,
) -> T:
    """Await ``fn()``, retrying ``InferenceError`` up to *max_retries* times.

    Any other exception (including ``asyncio.CancelledError`` and
    ``DimensionMismatchError``) propagates immediately.  After the last
    attempt the final ``InferenceError`` is re-raised.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except InferenceError as exc:
            attempt += 1
            if attempt > max_retries:
                logger.error(
                    "[retry] %s failed after %d attempt(s): %s", label, attempt, exc,
                )
                raise
            delay = backoff_delay(attempt, backoff_base, backoff_max)
            logger.warning(
                "[retry] %s failed (attempt %d/%d), retrying in %.2fs: %s",
                label, attempt, max_retries + 1, delay, exc,
            )
            await asyncio.sleep(delay)
