"""Exponential backoff around async collaborator calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Collection, Optional, TypeVar

from skinscan.errors import ClassifiedError, ErrorType, classify_error

LOGGER = logging.getLogger("skinscan.pipeline.retry")

T = TypeVar("T")

DEFAULT_RETRY_TYPES = frozenset({ErrorType.NETWORK, ErrorType.SERVER})

RetryCallback = Callable[[int, int, float, ClassifiedError], Optional[Awaitable[None]]]


def backoff_delay(initial_delay: float, attempt: int) -> float:
    """Delay before retry number ``attempt + 1``: ``initial_delay * 2 ** attempt``."""
    return initial_delay * (2 ** attempt)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    retry_types: Collection[ErrorType] = DEFAULT_RETRY_TYPES,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[RetryCallback] = None,
    classify: Callable[[BaseException], ClassifiedError] = classify_error,
) -> T:
    """Call ``fn`` until it succeeds, at most ``max_retries + 1`` times.

    Failures whose classified type is not in ``retry_types`` are re-raised
    immediately. After the last attempt the original exception propagates.
    ``on_retry(attempt, max_retries, delay, classified)`` runs before each sleep
    and may be a coroutine function.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            classified = classify(exc)
            if classified.type not in retry_types:
                LOGGER.debug("Not retrying %s error: %s", classified.type.value, exc)
                raise
            if attempt >= max_retries:
                LOGGER.warning("Giving up after %d attempts: %s", attempt + 1, exc)
                raise
            delay = backoff_delay(initial_delay, attempt)
            attempt += 1
            LOGGER.warning(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt,
                max_retries + 1,
                classified.type.value,
                delay,
            )
            if on_retry is not None:
                pending = on_retry(attempt, max_retries, delay, classified)
                if pending is not None:
                    await pending
            await sleep(delay)
