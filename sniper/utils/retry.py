"""Retry and backoff utilities for external calls."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay(n) = min(cap, base_delay * multiplier ** n).

    ``max_attempts`` counts the first try. A multiplier of 1 gives a fixed delay.
    """

    max_attempts: int
    base_delay: float
    multiplier: float = 2.0
    cap: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.cap, self.base_delay * self.multiplier ** attempt)

    @classmethod
    def fixed(cls, retries: int, delay: float) -> RetryPolicy:
        return cls(max_attempts=retries + 1, base_delay=delay, multiplier=1.0, cap=delay)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, raises something outside ``retry_on``,
    or ``policy.max_attempts`` is spent (the last error is re-raised).
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay,
            exp_base=policy.multiplier,
            min=0,
            max=policy.cap,
        ),
        retry=retry_if_exception_type(retry_on),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
