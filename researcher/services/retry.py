from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from researcher.errors import AuthenticationError, ConfigurationError

T = TypeVar("T")

RetryHook = Callable[[int, float, Exception], None]

NON_RETRYABLE = (AuthenticationError, ConfigurationError)


def backoff_delays(retries: int, base_delay: float) -> list[float]:
    """Sleep schedule used by `retry_async`: base, 2*base, 4*base, ..."""
    return [base_delay * (2**attempt) for attempt in range(max(retries, 0))]


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 1.0,
    on_retry: RetryHook | None = None,
) -> T:
    """Await `fn()` with exponential backoff on failure.

    Authentication and configuration errors propagate on the first attempt.
    """
    delays = backoff_delays(retries, base_delay)
    attempt = 0
    while True:
        try:
            return await fn()
        except NON_RETRYABLE:
            raise
        except Exception as exc:
            if attempt >= len(delays):
                raise
            delay = delays[attempt]
            attempt += 1
            if on_retry is not None:
                on_retry(attempt, delay, exc)
            await asyncio.sleep(delay)
