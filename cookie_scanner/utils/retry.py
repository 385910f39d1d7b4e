"""
Retry utility with exponential backoff for handling transient failures.
Used around the cookie categorization upstream, where timeouts, 5xx
responses and transport errors are common and usually short-lived.
"""

from __future__ import annotations

import asyncio
import dataclasses
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import aiohttp

from cookie_scanner.utils import errors, logger

log = logger.create_logger("Retry")

T = TypeVar("T")


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    ``max_attempts`` counts every call including the first, so the
    upstream is contacted at most that many times.  The delay before
    attempt ``n + 1`` is ``initial_delay_ms * multiplier ** (n - 1)``,
    capped at ``max_delay_ms``.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 10000
    jitter: float = 0.0

    def delay_ms(self, attempt: int) -> int:
        """Return the backoff before retrying after failed *attempt* (1-based)."""
        base = self.initial_delay_ms * (self.multiplier ** (attempt - 1))
        if self.jitter:
            base += base * self.jitter * (random.random() * 2 - 1)
        return int(min(max(base, 0), self.max_delay_ms))


def is_transient_error(error: BaseException) -> bool:
    """Check if the error is worth retrying (timeout, 5xx, transport)."""
    if isinstance(error, errors.CircuitOpenError):
        return False
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status >= 500 or error.status == 429
    if isinstance(error, aiohttp.ClientError):
        return True
    if isinstance(error, errors.CategorizationError):
        # Non-2xx, empty or unparsable upstream bodies all count.
        return True
    return isinstance(error, (ConnectionError, OSError))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    context: str | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """
    Execute an async function with automatic retry on transient failures.

    Non-retryable errors propagate immediately.  When the attempt
    budget is spent, the last error propagates.
    """
    attempts = max(policy.max_attempts, 1)

    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as error:
            if not is_retryable(error):
                raise

            if attempt >= attempts:
                log.warn(
                    "All retry attempts exhausted",
                    {
                        "context": context,
                        "attempts": attempt,
                        "error": errors.get_error_message(error)[:200],
                    },
                )
                raise

            delay = policy.delay_ms(attempt)
            log.warn(
                "Retrying after transient error",
                {
                    "context": context,
                    "attempt": attempt,
                    "maxAttempts": attempts,
                    "delayMs": delay,
                    "error": errors.get_error_message(error)[:100],
                },
            )
            await sleep(delay / 1000)

    # Unreachable: the loop either returns or raises.
    raise RuntimeError("retry loop exited without a result")
