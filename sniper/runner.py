#!/usr/bin/env python3
"""Sniper runner — wires the pipeline together and runs it until stopped.

Tasks on one event loop:
- ConnectionSupervisor: log stream -> intake -> event queue
- BatchExecutor: event queue -> screen -> buy -> tracker
- PositionTracker: price polling and exits
- Deduplicator sweeper

Usage:
    python3 -m sniper.runner
    python3 -m sniper.runner --config config/sniper.yaml --log-level DEBUG

Exit codes:
    0 = stopped cleanly (signal)
    1 = fatal (stream reconnects exhausted, a task crashed, bad config, key isolation violation)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Callable

import httpx
import websockets

from sniper.clients.helius import HeliusClient
from sniper.clients.jupiter import JupiterClient
from sniper.clients.rugcheck import RugCheckClient
from sniper.config import ConfigError, SniperConfig, load_config, websocket_url
from sniper.events import EventBus
from sniper.executor.batch import BatchExecutor
from sniper.executor.swap import SwapExecutor
from sniper.feed.decoder import TransactionDecoder
from sniper.feed.dedup import Deduplicator
from sniper.feed.event_queue import EventQueue
from sniper.feed.intake import EventIntake
from sniper.feed.supervisor import ConnectionSupervisor
from sniper.feed.validator import SignatureValidator
from sniper.screener import SafetyScreener
from sniper.signer.keychain import sign_transaction, verify_isolation
from sniper.state import PositionStore
from sniper.tracker import PositionTracker
from sniper.utils.rate_limiter import RateLimiter

log = logging.getLogger("sniper")


class Sniper:
    """Owns every component and the shared stop signal."""

    def __init__(
        self,
        config: SniperConfig,
        url: str,
        bus: EventBus | None = None,
        connect: Callable[..., Any] = websockets.connect,
        signer: Callable[[str], str] = sign_transaction,
        wallet_pubkey: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.stop = asyncio.Event()
        self.fatal = False
        self.bus = bus or EventBus()
        self.limiter = RateLimiter(config.rate_limits)

        timeout = config.swap.request_timeout_seconds
        self.helius = HeliusClient(limiter=self.limiter, timeout=timeout, transport=transport)
        self.jupiter = JupiterClient(limiter=self.limiter, timeout=timeout, transport=transport)
        self.rugcheck = RugCheckClient(limiter=self.limiter, timeout=timeout, transport=transport)

        self.queue = EventQueue(config.queue.capacity)
        self.dedup = Deduplicator(config.queue.dedup_retention_seconds)
        self.intake = EventIntake(SignatureValidator(config.queue), self.dedup, self.queue)
        self.supervisor = ConnectionSupervisor(
            config.stream,
            url,
            self.intake,
            bus=self.bus,
            limiter=self.limiter,
            on_fatal=self._on_fatal,
            connect=connect,
        )

        self.decoder = TransactionDecoder(
            self.helius, config.queue, config.stream.program_id, config.paired_asset_mint
        )
        self.screener = SafetyScreener(config.safety, self.rugcheck)
        self.executor = SwapExecutor(
            config.swap, self.jupiter, self.helius, signer=signer, wallet_pubkey=wallet_pubkey
        )
        store = PositionStore(config.state_file) if config.state_file else None
        self.tracker = PositionTracker(
            config.exit, self.jupiter, self.executor, bus=self.bus, store=store
        )
        self.batch = BatchExecutor(
            self.queue,
            self.decoder,
            self.screener,
            self.executor,
            self.tracker,
            config.queue,
            config.swap,
            bus=self.bus,
        )

    def _on_fatal(self) -> None:
        self.fatal = True
        self.request_stop()

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        log.critical("Task %s crashed, shutting down: %r", task.get_name(), task.exception())
        self._on_fatal()

    def request_stop(self) -> None:
        if not self.stop.is_set():
            log.info("Stop requested, finishing in-flight work")
            self.stop.set()

    async def _close_stream_on_stop(self) -> None:
        await self.stop.wait()
        await self.supervisor.close()

    async def run(self) -> int:
        isolation = verify_isolation()
        if any("CRITICAL" in v for v in isolation["violations"]):
            log.critical("Key isolation violation: %s", isolation["message"])
            return 1
        for warning in isolation["violations"]:
            log.warning("%s", warning)

        if self.config.swap.simulation_mode:
            log.warning("Simulation mode: swaps are quoted, never signed or sent")
        self.tracker.restore()

        tasks = [
            asyncio.create_task(self.supervisor.start(self.stop), name="supervisor"),
            asyncio.create_task(self.batch.run(self.stop), name="batch"),
            asyncio.create_task(self.tracker.run(self.stop), name="tracker"),
            asyncio.create_task(
                self.dedup.run_sweeper(self.stop, self.config.queue.dedup_sweep_interval_seconds),
                name="dedup-sweeper",
            ),
            asyncio.create_task(self._close_stream_on_stop(), name="stream-closer"),
        ]
        for task in tasks:
            task.add_done_callback(self._on_task_done)
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            await self.close()
        return 1 if self.fatal else 0

    async def close(self) -> None:
        await self.helius.close()
        await self.jupiter.close()
        await self.rugcheck.close()


async def _amain(config: SniperConfig) -> int:
    sniper = Sniper(config, websocket_url(config))
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, sniper.request_stop)
        except NotImplementedError:
            pass
    return await sniper.run()


def main() -> None:
    parser = argparse.ArgumentParser(description="Solana new-pool sniper")
    parser.add_argument("--config", default=None, help="Path to sniper.yaml (default: config/sniper.yaml)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        websocket_url(config)
    except ConfigError as e:
        log.critical("Invalid configuration: %s", e)
        sys.exit(1)

    sys.exit(asyncio.run(_amain(config)))


if __name__ == "__main__":
    main()
