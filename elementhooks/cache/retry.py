from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from elementhooks.core.exceptions import RemoteError
from elementhooks.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2**attempt), max_delay)


def is_transient(error: BaseException) -> bool:
    if isinstance(error, RemoteError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


async def retry_transient(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> T:
    """Run ``func`` and retry transient failures with exponential backoff.

    Validation, not-found and permission errors are raised on the first
    attempt; anything else not recognised as transient is raised as-is.
    """

    attempt = 0
    while True:
        try:
            return await func()
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_retries:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Transient failure (attempt %s/%s), retrying in %.2fs: %s",
                attempt + 1,
                max_retries + 1,
                delay,
                exc,
            )
            if on_retry is not None:
                on_retry(attempt + 1, exc)
            await sleep(delay)
            attempt += 1
