"""
tokenbridge.retry

Bounded retry with exponential backoff for calls that cross a process boundary.

Responsibilities:
- Retry only the exception types the call site declares as transient.
- Give up after a fixed number of attempts and re-raise the last error.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tokenbridge.observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            # +/-10% so concurrent callers do not retry in lockstep.
            delay += random.uniform(-delay * 0.1, delay * 0.1)
        return max(0.0, delay)


NO_RETRY = RetryPolicy(max_attempts=1)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    operation: str,
) -> T:
    attempt = 1
    while True:
        try:
            return await fn()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                log.error(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            delay = policy.delay(attempt)
            log.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)
            attempt += 1
