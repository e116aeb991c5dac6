"""Event id deduplication with a retention window."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

log = logging.getLogger(__name__)


class Deduplicator:
    """Remembers event ids for ``retention_seconds``.

    An id remembered within the window is reported as seen; ``sweep()``
    forgets ids older than the window so the map stays bounded.
    """

    def __init__(
        self,
        retention_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    def _fresh(self, event_id: str, now: float) -> bool:
        stamp = self._seen.get(event_id)
        return stamp is not None and now - stamp < self.retention_seconds

    def seen(self, event_id: str) -> bool:
        with self._lock:
            return self._fresh(event_id, self._clock())

    def remember(self, event_id: str) -> None:
        with self._lock:
            self._seen[event_id] = self._clock()

    def check_and_remember(self, event_id: str) -> bool:
        """Remember ``event_id``; True only the first time within the window."""
        with self._lock:
            now = self._clock()
            if self._fresh(event_id, now):
                return False
            self._seen[event_id] = now
            return True

    def sweep(self) -> int:
        """Forget expired ids; returns how many were dropped."""
        with self._lock:
            cutoff = self._clock() - self.retention_seconds
            expired = [k for k, stamp in self._seen.items() if stamp <= cutoff]
            for k in expired:
                del self._seen[k]
        if expired:
            log.debug("Dedup sweep dropped %d ids (%d retained)", len(expired), len(self._seen))
        return len(expired)

    async def run_sweeper(self, stop: asyncio.Event, interval: float = 300.0) -> None:
        """Sweep every ``interval`` seconds until ``stop`` is set."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                self.sweep()
