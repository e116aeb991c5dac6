"""Batch executor — drains the event queue into the buy pipeline.

Per event: decode -> screen -> new_token event -> buy -> open position.
At most ``max_concurrent`` events are in flight and consecutive starts are
spaced by ``tx_delay_seconds``. A failure in one event is logged and never
stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from sniper.config import QueueSettings, SwapSettings
from sniper.events import EventBus
from sniper.executor.swap import SwapExecutor
from sniper.feed.decoder import TransactionDecoder
from sniper.feed.event_queue import EventQueue
from sniper.models import Event
from sniper.screener import SafetyScreener
from sniper.tracker import PositionTracker

log = logging.getLogger(__name__)


class BatchExecutor:
    def __init__(
        self,
        queue: EventQueue,
        decoder: TransactionDecoder,
        screener: SafetyScreener,
        executor: SwapExecutor,
        tracker: PositionTracker,
        queue_settings: QueueSettings,
        swap_settings: SwapSettings,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.queue = queue
        self.decoder = decoder
        self.screener = screener
        self.executor = executor
        self.tracker = tracker
        self.queue_settings = queue_settings
        self.swap_settings = swap_settings
        self.bus = bus
        self._clock = clock
        self._sleep = sleep
        self._stop: asyncio.Event | None = None
        self._buying: set[str] = set()
        self.processed = 0

    def _stopping(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    async def run(self, stop: asyncio.Event) -> None:
        """Process queued events until ``stop``; in-flight events are awaited."""
        self._stop = stop
        semaphore = asyncio.Semaphore(self.queue_settings.max_concurrent)
        in_flight: set[asyncio.Task] = set()
        last_start: float | None = None

        async def worker(event: Event) -> None:
            try:
                await self.process(event)
            finally:
                semaphore.release()

        try:
            while not stop.is_set():
                event = await self.queue.get(stop)
                if event is None:
                    break
                await semaphore.acquire()
                if last_start is not None:
                    gap = self.queue_settings.tx_delay_seconds - (self._clock() - last_start)
                    if gap > 0:
                        await self._sleep(gap)
                if stop.is_set():
                    semaphore.release()
                    log.info("Stopping, %s left unprocessed", event.event_id)
                    break
                last_start = self._clock()
                task = asyncio.create_task(worker(event))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
        finally:
            if in_flight:
                log.info("Waiting for %d in-flight events", len(in_flight))
                await asyncio.gather(*in_flight, return_exceptions=True)

    async def process(self, event: Event) -> str:
        """Run one event through the pipeline; returns its outcome label."""
        self.processed += 1
        try:
            candidate = await self.decoder.decode(event)
            if candidate is None:
                return "not_pool"
            mint = candidate.token_mint
            if self.tracker.has_position(mint) or mint in self._buying:
                log.info("Skipping %s: already held", mint)
                return "already_held"

            self._buying.add(mint)
            try:
                verdict = await self.screener.assess(candidate)
                if self.bus is not None:
                    self.bus.new_token(candidate, verdict)
                if not verdict.passed:
                    return "rejected"

                if self.swap_settings.initial_buy_delay_seconds > 0:
                    await self._sleep(self.swap_settings.initial_buy_delay_seconds)
                if self._stopping():
                    log.info("Stopping, not buying %s", mint)
                    return "stopped"

                result = await self.executor.buy(
                    candidate.paired_asset_mint, mint, self.swap_settings.amount_lamports
                )
                if not result.success:
                    log.warning("Buy failed for %s: %s", mint, result.error)
                    return "buy_failed"

                position = await self.tracker.open_position(
                    candidate, size=result.out_amount, buy_tx_id=result.tx_id
                )
            finally:
                self._buying.discard(mint)
            return "opened" if position is not None else "already_held"
        except Exception:
            log.exception("Failed processing %s", event.event_id)
            return "error"
