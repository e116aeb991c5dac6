"""Per-resource rate limiter shared by every outbound call."""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from typing import Awaitable, Callable, Mapping

from sniper.config import RateLimitSettings
from sniper.models import RateWindow

log = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limiter keyed by resource name.

    Each resource keeps the timestamps of its granted calls. A call is granted
    only while fewer than ``ceiling`` timestamps fall inside the trailing
    ``window_seconds``, so no rolling window ever sees more than ``ceiling``
    grants. Resources without configured limits are unlimited.
    """

    def __init__(
        self,
        limits: Mapping[str, RateLimitSettings],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._limits = dict(limits)
        self._clock = clock
        self._sleep = sleep
        self._history: dict[str, deque[float]] = {name: deque() for name in self._limits}
        self._lock = threading.Lock()

    def _prune(self, resource: str, now: float) -> deque[float]:
        history = self._history[resource]
        cutoff = now - self._limits[resource].window_seconds
        while history and history[0] <= cutoff:
            history.popleft()
        return history

    def try_acquire(self, resource: str) -> bool:
        """Grant one call for ``resource`` if its window has room.

        A refusal charges nothing.
        """
        if resource not in self._limits:
            return True
        with self._lock:
            now = self._clock()
            history = self._prune(resource, now)
            if len(history) >= self._limits[resource].ceiling:
                return False
            history.append(now)
            return True

    def retry_after(self, resource: str) -> float:
        """Seconds until ``resource`` frees a slot (0 if one is free now)."""
        if resource not in self._limits:
            return 0.0
        with self._lock:
            now = self._clock()
            history = self._prune(resource, now)
            if len(history) < self._limits[resource].ceiling:
                return 0.0
            return max(0.0, history[0] + self._limits[resource].window_seconds - now)

    async def acquire(self, resource: str) -> None:
        """Wait until ``resource`` grants a call."""
        while not self.try_acquire(resource):
            wait = self.retry_after(resource)
            log.debug("Rate limit reached for %s, deferring %.2fs", resource, wait)
            await self._sleep(wait)

    def window(self, resource: str) -> RateWindow:
        """Snapshot of the current window for ``resource``."""
        limit = self._limits.get(resource)
        if limit is None:
            raise KeyError(f"No rate limit configured for {resource!r}")
        with self._lock:
            now = self._clock()
            history = self._prune(resource, now)
            return RateWindow(
                resource=resource,
                window_start=history[0] if history else now,
                count=len(history),
                ceiling=limit.ceiling,
                window_seconds=limit.window_seconds,
            )
