"""Retry-with-backoff combinator for async callables."""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Backoff = Callable[[int], float]
Sleep = Callable[[float], Awaitable[Any]]


def linear_backoff(step: float = 1.0) -> Backoff:
    """Delay of ``attempt * step`` seconds after the given failed attempt."""

    def delay(attempt: int) -> float:
        return attempt * step

    return delay


def retry_async(
    *,
    max_attempts: int = 3,
    backoff: Backoff = linear_backoff(1.0),
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    sleep: Sleep = asyncio.sleep,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async function so it is retried on the given exceptions.

    The wrapped call is attempted at most ``max_attempts`` times. After the
    n-th failed attempt the wrapper sleeps ``backoff(n)`` seconds. When every
    attempt fails, the last exception is re-raised unchanged.

    Example:
        @retry_async(max_attempts=3, exceptions=(TransportError,))
        async def fetch() -> str:
            ...
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        raise
                    delay = backoff(attempt)
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}; "
                        f"retrying in {delay:.1f}s"
                    )
                    await sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
