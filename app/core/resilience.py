"""
Retry with exponential backoff for calls to the payment processor.

Only calls that are idempotent on the processor side may be wrapped:
Stripe mutations are sent with an idempotency key derived from the
subscription id and the requested value, so a retried request can never
apply twice.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    max_retries: int = 2,
    base_delay: float = 0.5,
    multiplier: float = 2.0,
    jitter_pct: float = 0.25,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Async retry decorator with exponential backoff and jitter.

    Args:
        max_retries: Maximum number of retry attempts (0 disables retrying).
        base_delay: Starting delay in seconds.
        multiplier: Delay multiplier per attempt (2.0 = double each time).
        jitter_pct: Random jitter as percentage of delay (0.25 = ±25%).
        retryable_exceptions: Exception types that trigger a retry.
            Non-matching exceptions pass through immediately.

    Backoff schedule (with base_delay=0.5, multiplier=2):
        Attempt 1: ~0.5s
        Attempt 2: ~1.0s
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries:
                        if max_retries:
                            logger.error(
                                f"{func.__name__} failed after {max_retries + 1} attempts: {e}"
                            )
                        raise

                    delay = base_delay * (multiplier ** attempt)
                    jitter = delay * jitter_pct * (2 * random.random() - 1)
                    actual_delay = max(0, delay + jitter)

                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                        f"Retrying in {actual_delay:.1f}s..."
                    )

                    await asyncio.sleep(actual_delay)

            raise RuntimeError("unreachable")  # pragma: no cover

        return wrapper

    return decorator
