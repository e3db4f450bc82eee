"""Exponential backoff for flaky backend calls (job writes, uploads)."""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)
T = TypeVar("T")


def backoff_delays(
    max_attempts: int,
    base_delay: float,
    max_delay: Optional[float] = None,
) -> list[float]:
    """
    Sleep before each retry: ``base_delay * 2**n``, optionally capped.

    There is one delay fewer than attempts; nothing sleeps after the last one.
    """
    delays = [base_delay * (2**attempt) for attempt in range(max(max_attempts - 1, 0))]
    if max_delay is not None:
        delays = [min(delay, max_delay) for delay in delays]
    return delays


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    max_delay: Optional[float] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry a coroutine function with exponential backoff.

    Args:
        max_attempts: Total calls before giving up
        base_delay: First delay in seconds (doubles each attempt)
        exceptions: Exception types that trigger a retry; others propagate at once
        max_delay: Optional ceiling for a single delay

    Returns:
        Decorator producing the retrying coroutine function; it re-raises the
        last exception once every attempt has failed
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            delays = backoff_delays(max_attempts, base_delay, max_delay)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt > len(delays):
                        logger.error(
                            f"{func.__name__}: giving up after {attempt} attempts: {e}"
                        )
                        raise
                    delay = delays[attempt - 1]
                    logger.warning(
                        f"{func.__name__}: attempt {attempt}/{max_attempts} "
                        f"failed: {e}. Retrying in {delay}s..."
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
