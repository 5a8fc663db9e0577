"""Retry utility with exponential backoff and jitter.

Supports transient vs permanent failure classification via
retryable_exceptions, and honors a provider delay hint carried on the
exception as ``retry_after`` (seconds).
"""

import asyncio
import logging
import random
from collections.abc import Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)


def compute_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_ratio: float = 0.3,
    retry_after: float | None = None,
) -> float:
    """Return the wait before the next attempt.

    Delay follows base_delay * 2^attempt plus up to jitter_ratio of that
    as random jitter. A retry_after hint replaces the exponential value.
    Both are capped at max_delay.

    Args:
        attempt: Zero-based index of the attempt that just failed.
        base_delay: Base delay in seconds.
        max_delay: Upper bound for any single wait.
        jitter_ratio: Fraction of the exponential delay added as jitter.
        retry_after: Optional server-provided delay in seconds.

    Returns:
        Delay in seconds.
    """
    if retry_after is not None:
        return min(max(retry_after, 0.0), max_delay)
    exponential = base_delay * (2**attempt)
    jitter = random.uniform(0, jitter_ratio * exponential) if jitter_ratio else 0.0
    return min(exponential + jitter, max_delay)


def retry_with_backoff(
    retryable_exceptions: tuple[type[Exception], ...],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_ratio: float = 0.3,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Args:
        retryable_exceptions: Transient exception types. Anything else
            propagates from the first attempt.
        max_retries: Maximum number of retry attempts (default 3).
        base_delay: Base delay in seconds before first retry (default 1.0).
        max_delay: Cap for a single delay in seconds (default 30.0).
        jitter_ratio: Random jitter as a fraction of the delay (default 0.3).

    Returns:
        Decorator that wraps an async function with retry logic.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    if attempt >= max_retries:
                        logger.error(
                            "Giving up on %s after %d attempts: %s",
                            func.__name__,
                            attempt + 1,
                            exc,
                            extra={"attempt": attempt + 1},
                        )
                        raise
                    delay = compute_backoff_delay(
                        attempt,
                        base_delay=base_delay,
                        max_delay=max_delay,
                        jitter_ratio=jitter_ratio,
                        retry_after=getattr(exc, "retry_after", None),
                    )
                    logger.warning(
                        "Retry %d/%d for %s after %.1fs: %s",
                        attempt + 1,
                        max_retries,
                        func.__name__,
                        delay,
                        exc,
                        extra={"attempt": attempt + 1},
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
