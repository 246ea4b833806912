"""
Exponential backoff for transient indexer failures.
"""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, TypeVar

import aiohttp

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_permanent(exc: BaseException) -> bool:
    # 4xx answers won't get better by asking again, except for throttling
    return (
        isinstance(exc, aiohttp.ClientResponseError)
        and 400 <= exc.status < 500
        and exc.status != 429
    )


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple = (aiohttp.ClientError, asyncio.TimeoutError),
):
    """
    Retry a coroutine function up to ``max_retries`` times, doubling the
    delay between attempts (capped at ``max_delay``).  The last error is
    re-raised once the attempts run out.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as exc:
                    if _is_permanent(exc) or attempt >= max_retries:
                        logger.warning(
                            "%s failed after %d attempt(s): %s",
                            func.__name__,
                            attempt + 1,
                            exc,
                        )
                        raise
                    delay = min(base_delay * 2 ** attempt, max_delay)
                    attempt += 1
                    logger.debug(
                        "%s: attempt %d/%d failed (%s), retrying in %.1fs",
                        func.__name__,
                        attempt,
                        max_retries + 1,
                        type(exc).__name__,
                        delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
