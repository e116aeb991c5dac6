"""Connection supervisor for the Helius log stream.

Owns the websocket: connect with cooldown and bounded handshake, subscribe
to the program's logs, feed pool-creation events to the intake, and
reconnect with capped exponential backoff. After ``max_reconnect_attempts``
consecutive failures it gives up and calls ``on_fatal``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

import websockets

from sniper.config import StreamSettings
from sniper.events import EventBus
from sniper.feed.decoder import MessageKind, parse_notification
from sniper.feed.intake import EventIntake
from sniper.models import ConnectionState
from sniper.utils.rate_limiter import RateLimiter
from sniper.utils.retry import RetryPolicy

log = logging.getLogger(__name__)


class ConnectionSupervisor:
    def __init__(
        self,
        settings: StreamSettings,
        url: str,
        intake: EventIntake,
        bus: EventBus | None = None,
        limiter: RateLimiter | None = None,
        on_fatal: Callable[[], Any] | None = None,
        connect: Callable[..., Any] = websockets.connect,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.url = url
        self.intake = intake
        self.bus = bus
        self._limiter = limiter
        self._on_fatal = on_fatal
        self._connect = connect
        self._clock = clock
        self._sleep = sleep
        self.policy = RetryPolicy(
            max_attempts=settings.max_reconnect_attempts,
            base_delay=settings.backoff_base_seconds,
            multiplier=settings.backoff_multiplier,
            cap=settings.backoff_cap_seconds,
        )

        self.state = ConnectionState.DISCONNECTED
        self.failures = 0
        self.connect_attempts = 0
        self.fatal = False
        self._last_attempt: float | None = None
        self._ws: Any = None
        self._subscribed_ws: Any = None

    def _set_state(self, state: ConnectionState, detail: str = "") -> None:
        if state is self.state:
            return
        log.debug("Stream state %s -> %s", self.state.value, state.value)
        self.state = state
        if self.bus is not None:
            self.bus.connection_status(state, detail)

    def subscribe_request(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self.settings.program_id]},
                {"commitment": self.settings.commitment},
            ],
        }

    async def start(self, stop: asyncio.Event) -> None:
        """Run until ``stop`` is set or reconnects are exhausted. Never raises."""
        try:
            while not stop.is_set():
                await self._cooldown()
                self._set_state(ConnectionState.CONNECTING)
                self.connect_attempts += 1
                self._last_attempt = self._clock()
                try:
                    await self._session(stop)
                    detail = "closed"
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    detail = f"{type(e).__name__}: {e}"
                    log.warning("Stream connection failed: %s", detail)
                self._set_state(ConnectionState.DISCONNECTED, detail)
                if stop.is_set():
                    break

                self.failures += 1
                if self.failures >= self.settings.max_reconnect_attempts:
                    self.fatal = True
                    log.critical(
                        "Stream lost after %d consecutive failed attempts, giving up",
                        self.failures,
                    )
                    if self.bus is not None:
                        self.bus.connection_status(self.state, "reconnect attempts exhausted")
                    if self._on_fatal is not None:
                        self._on_fatal()
                    break

                delay = self.policy.delay_for(self.failures - 1)
                self._set_state(ConnectionState.COOLING_DOWN)
                log.info(
                    "Reconnecting in %.1fs (failure %d/%d)",
                    delay, self.failures, self.settings.max_reconnect_attempts,
                )
                await self._sleep(delay)
        finally:
            self._ws = None
            if self.state is not ConnectionState.DISCONNECTED:
                self._set_state(ConnectionState.DISCONNECTED, "stopped")

    async def _cooldown(self) -> None:
        if self._last_attempt is None:
            return
        remaining = self.settings.cooldown_seconds - (self._clock() - self._last_attempt)
        if remaining > 0:
            log.debug("Connect cooldown, waiting %.2fs", remaining)
            await self._sleep(remaining)

    async def _session(self, stop: asyncio.Event) -> None:
        ws = await asyncio.wait_for(
            self._connect(self.url),
            timeout=self.settings.handshake_timeout_seconds,
        )
        self._ws = ws
        try:
            await self.on_open(ws)
            async for raw in ws:
                if stop.is_set():
                    break
                try:
                    self.handle_message(raw)
                except Exception:
                    log.exception("Dropped message that failed to route")
        finally:
            self._ws = None
            await ws.close()

    async def on_open(self, ws: Any) -> None:
        """Subscribe on a freshly opened socket. Repeat calls for the same socket are no-ops."""
        if self._subscribed_ws is ws:
            return
        if self._limiter is not None:
            await self._limiter.acquire("subscription")
        await ws.send(json.dumps(self.subscribe_request()))
        self._subscribed_ws = ws
        self.failures = 0
        self._set_state(ConnectionState.SUBSCRIBED)
        log.info("Subscribed to logs mentioning %s", self.settings.program_id)

    def handle_message(self, raw: Any) -> bool:
        """Route one inbound message; True when an event reached the intake."""
        if self.state is not ConnectionState.SUBSCRIBED:
            log.debug("Discarding message received while %s", self.state.value)
            return False

        decoded = parse_notification(raw, self.settings.pool_create_marker)
        if decoded.kind is MessageKind.CONTROL:
            if decoded.detail.startswith("error"):
                log.warning("Stream control message: %s", decoded.detail)
            else:
                log.info("Stream control message: %s", decoded.detail)
            return False
        if decoded.kind is MessageKind.MALFORMED:
            log.debug("Dropped malformed message: %s", decoded.detail)
            return False
        if decoded.kind is MessageKind.IRRELEVANT:
            return False
        return self.intake.submit(decoded.event)

    async def close(self) -> None:
        """Close the active socket so the read loop ends."""
        ws = self._ws
        if ws is not None:
            await ws.close()
