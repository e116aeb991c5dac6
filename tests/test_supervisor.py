"""Tests for the connection supervisor.

Sockets, clock and sleep are all fakes: no network, no real waiting.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from sniper.config import QueueSettings, StreamSettings
from sniper.events import EventBus
from sniper.feed.dedup import Deduplicator
from sniper.feed.event_queue import EventQueue
from sniper.feed.intake import EventIntake
from sniper.feed.supervisor import ConnectionSupervisor
from sniper.feed.validator import SignatureValidator
from sniper.models import ConnectionState
from tests.mocks.mock_helius import (
    MALFORMED_NOTIFICATION,
    POOL_NOTIFICATION_T,
    POOL_NOTIFICATION_U,
    RAYDIUM,
    SIG_T,
    SIG_U,
    SUBSCRIBE_ACK,
    SWAP_NOTIFICATION,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWebSocket:
    def __init__(self, messages: list):
        self.messages = [m if isinstance(m, str) else json.dumps(m) for m in messages]
        self.sent: list[str] = []
        self.closed = False

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            if self.closed:
                return
            yield message


def _intake() -> EventIntake:
    settings = QueueSettings()
    return EventIntake(SignatureValidator(settings), Deduplicator(), EventQueue(settings.capacity))


def _settings(**overrides) -> StreamSettings:
    values = dict(
        cooldown_seconds=0,
        backoff_base_seconds=5,
        backoff_multiplier=2,
        backoff_cap_seconds=60,
        max_reconnect_attempts=5,
    )
    values.update(overrides)
    return StreamSettings(**values)


class TestReconnect:
    @pytest.mark.asyncio
    async def test_stops_after_max_attempts(self):
        """Five consecutive failed connects → fatal, no sixth attempt."""
        clock = FakeClock()
        calls = []

        async def connect(url):
            calls.append(url)
            raise OSError("connection refused")

        fatal = []
        supervisor = ConnectionSupervisor(
            _settings(),
            "wss://example.invalid",
            _intake(),
            on_fatal=lambda: fatal.append(True),
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())

        assert len(calls) == 5
        assert supervisor.connect_attempts == 5
        assert supervisor.fatal is True
        assert fatal == [True]
        assert supervisor.state is ConnectionState.DISCONNECTED
        assert clock.sleeps == [5, 10, 20, 40]

    @pytest.mark.asyncio
    async def test_backoff_capped(self):
        clock = FakeClock()

        async def connect(url):
            raise OSError("down")

        supervisor = ConnectionSupervisor(
            _settings(max_reconnect_attempts=7, backoff_cap_seconds=30),
            "wss://example.invalid",
            _intake(),
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())
        assert clock.sleeps == [5, 10, 20, 30, 30, 30]

    @pytest.mark.asyncio
    async def test_cooldown_between_attempts(self):
        clock = FakeClock()

        async def connect(url):
            raise OSError("down")

        supervisor = ConnectionSupervisor(
            _settings(cooldown_seconds=8, backoff_base_seconds=5, max_reconnect_attempts=2),
            "wss://example.invalid",
            _intake(),
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())
        # 5s backoff, then 3s more to honour the 8s cooldown
        assert clock.sleeps == [5, 3]

    @pytest.mark.asyncio
    async def test_handshake_timeout_is_a_failure(self):
        clock = FakeClock()

        async def connect(url):
            await asyncio.sleep(10)

        supervisor = ConnectionSupervisor(
            _settings(handshake_timeout_seconds=0.01, max_reconnect_attempts=1),
            "wss://example.invalid",
            _intake(),
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())
        assert supervisor.fatal is True
        assert supervisor.connect_attempts == 1

    @pytest.mark.asyncio
    async def test_successful_subscription_resets_failures(self):
        clock = FakeClock()
        sockets = iter([None, FakeWebSocket([SUBSCRIBE_ACK]), None, None])

        async def connect(url):
            ws = next(sockets)
            if ws is None:
                raise OSError("down")
            return ws

        supervisor = ConnectionSupervisor(
            _settings(max_reconnect_attempts=3),
            "wss://example.invalid",
            _intake(),
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())
        # fail, subscribe+close (counter reset to 0 then 1), fail, fail
        assert supervisor.connect_attempts == 4
        assert supervisor.fatal is True


class TestSession:
    @pytest.mark.asyncio
    async def test_subscribes_and_routes_messages(self):
        clock = FakeClock()
        ws = FakeWebSocket([
            SUBSCRIBE_ACK,
            MALFORMED_NOTIFICATION,
            SWAP_NOTIFICATION,
            POOL_NOTIFICATION_T,
            POOL_NOTIFICATION_T,
            "not json at all",
            POOL_NOTIFICATION_U,
        ])

        async def connect(url):
            return ws

        intake = _intake()
        supervisor = ConnectionSupervisor(
            _settings(max_reconnect_attempts=1),
            "wss://example.invalid",
            intake,
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())

        assert len(ws.sent) == 1
        request = json.loads(ws.sent[0])
        assert request["method"] == "logsSubscribe"
        assert request["params"][0] == {"mentions": [RAYDIUM]}
        assert request["params"][1] == {"commitment": "confirmed"}
        assert [e.event_id for e in intake.queue.snapshot()] == [SIG_T, SIG_U]
        assert ws.closed

    @pytest.mark.asyncio
    async def test_bad_notification_shape_keeps_session(self):
        ws = FakeWebSocket([
            SUBSCRIBE_ACK,
            {"jsonrpc": "2.0", "method": "logsNotification", "params": "oops"},
            {"jsonrpc": "2.0", "method": "logsNotification", "params": {"result": "x"}},
            POOL_NOTIFICATION_T,
        ])
        connects = []

        async def connect(url):
            connects.append(url)
            return ws

        intake = _intake()
        clock = FakeClock()
        supervisor = ConnectionSupervisor(
            _settings(max_reconnect_attempts=1),
            "wss://example.invalid",
            intake,
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())

        assert len(connects) == 1
        assert [e.event_id for e in intake.queue.snapshot()] == [SIG_T]

    @pytest.mark.asyncio
    async def test_routing_error_drops_only_that_message(self):
        ws = FakeWebSocket([SUBSCRIBE_ACK, POOL_NOTIFICATION_T, POOL_NOTIFICATION_U])

        async def connect(url):
            return ws

        intake = _intake()
        submit = intake.submit
        seen = []

        def flaky_submit(event):
            seen.append(event.event_id)
            if event.event_id == SIG_T:
                raise RuntimeError("intake bug")
            return submit(event)

        intake.submit = flaky_submit
        clock = FakeClock()
        supervisor = ConnectionSupervisor(
            _settings(max_reconnect_attempts=1),
            "wss://example.invalid",
            intake,
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())

        assert seen == [SIG_T, SIG_U]
        assert [e.event_id for e in intake.queue.snapshot()] == [SIG_U]
        assert supervisor.connect_attempts == 1

    @pytest.mark.asyncio
    async def test_duplicate_open_is_idempotent(self):
        supervisor = ConnectionSupervisor(_settings(), "wss://example.invalid", _intake())
        ws = FakeWebSocket([])
        await supervisor.on_open(ws)
        await supervisor.on_open(ws)

        assert len(ws.sent) == 1
        assert supervisor.state is ConnectionState.SUBSCRIBED

    def test_messages_discarded_unless_subscribed(self):
        intake = _intake()
        supervisor = ConnectionSupervisor(_settings(), "wss://example.invalid", intake)
        supervisor.state = ConnectionState.COOLING_DOWN

        assert supervisor.handle_message(json.dumps(POOL_NOTIFICATION_T)) is False
        assert len(intake.queue) == 0

    @pytest.mark.asyncio
    async def test_stop_ends_session(self):
        ws = FakeWebSocket([POOL_NOTIFICATION_T, POOL_NOTIFICATION_U])
        stop = asyncio.Event()
        stop.set()

        async def connect(url):
            return ws

        supervisor = ConnectionSupervisor(_settings(), "wss://example.invalid", _intake(), connect=connect)
        await supervisor.start(stop)
        assert supervisor.connect_attempts == 0
        assert supervisor.fatal is False

    @pytest.mark.asyncio
    async def test_every_transition_emits_status(self):
        clock = FakeClock()
        bus = EventBus()
        seen: list[ConnectionState] = []
        bus.subscribe("connection_status", lambda state, detail: seen.append(state))
        sockets = iter([FakeWebSocket([SUBSCRIBE_ACK])])

        async def connect(url):
            ws = next(sockets, None)
            if ws is None:
                raise OSError("down")
            return ws

        supervisor = ConnectionSupervisor(
            _settings(max_reconnect_attempts=2),
            "wss://example.invalid",
            _intake(),
            bus=bus,
            connect=connect,
            clock=clock,
            sleep=clock.sleep,
        )
        await supervisor.start(asyncio.Event())

        assert seen[:4] == [
            ConnectionState.CONNECTING,
            ConnectionState.SUBSCRIBED,
            ConnectionState.DISCONNECTED,
            ConnectionState.COOLING_DOWN,
        ]
        assert seen[-1] is ConnectionState.DISCONNECTED
