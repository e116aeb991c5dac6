"""Bounded FIFO of pending events; overflow evicts the oldest entry."""

from __future__ import annotations

import asyncio
from collections import deque

from sniper.models import Event


class EventQueue:
    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: deque[Event] = deque()
        self._ready = asyncio.Event()
        self.evicted = 0

    def __len__(self) -> int:
        return len(self._items)

    def push(self, event: Event) -> Event | None:
        """Append ``event``; returns the evicted oldest event when full."""
        dropped = None
        if len(self._items) >= self.capacity:
            dropped = self._items.popleft()
            self.evicted += 1
        self._items.append(event)
        self._ready.set()
        return dropped

    def pop(self) -> Event | None:
        if not self._items:
            return None
        event = self._items.popleft()
        if not self._items:
            self._ready.clear()
        return event

    def pop_batch(self, n: int) -> list[Event]:
        batch = []
        while self._items and len(batch) < n:
            batch.append(self._items.popleft())
        if not self._items:
            self._ready.clear()
        return batch

    def snapshot(self) -> list[Event]:
        return list(self._items)

    async def get(self, stop: asyncio.Event) -> Event | None:
        """Wait for the next event; None once ``stop`` is set."""
        while not stop.is_set():
            event = self.pop()
            if event is not None:
                return event
            ready = asyncio.ensure_future(self._ready.wait())
            stopped = asyncio.ensure_future(stop.wait())
            try:
                await asyncio.wait({ready, stopped}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                ready.cancel()
                stopped.cancel()
        return None
