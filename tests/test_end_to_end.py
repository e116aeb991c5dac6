"""End-to-end: stream messages in, one buy and one take-profit sell out.

Scenario: a malformed notification, a pool for token T (fails the liquidity
floor) and a pool for token U (clean). U's price then rises 20%.
All HTTP goes through one httpx.MockTransport; the stream is a fake socket.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from sniper.config import ExitSettings, QueueSettings, SniperConfig, SwapSettings
from sniper.events import EventBus
from sniper.models import ConnectionState, ExitReason
from sniper.runner import Sniper
from tests.mocks.mock_helius import (
    MALFORMED_NOTIFICATION,
    PARSED_TX_T,
    PARSED_TX_U,
    POOL_NOTIFICATION_T,
    POOL_NOTIFICATION_U,
    SIG_T,
    SIG_U,
    SUBSCRIBE_ACK,
    TOKEN_T,
    TOKEN_U,
    WSOL,
)
from tests.mocks.mock_jupiter import BUY_QUOTE, SELL_QUOTE, price_response
from tests.mocks.mock_rugcheck import CLEAN_REPORT, LOW_LIQUIDITY_REPORT

PARSED = {SIG_T: PARSED_TX_T, SIG_U: PARSED_TX_U}
REPORTS = {TOKEN_T: LOW_LIQUIDITY_REPORT, TOKEN_U: CLEAN_REPORT}


class FakeMarket:
    """Routes every outbound request the pipeline makes."""

    def __init__(self, prices: list[float]):
        self.prices = list(prices)
        self.quotes: list[tuple[str, str]] = []
        self.reports: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        if host == "api.helius.xyz" and path == "/v0/transactions":
            sig = json.loads(request.content)["transactions"][0]
            return httpx.Response(200, json=PARSED.get(sig, []))
        if host == "api.rugcheck.xyz":
            mint = path.split("/")[3]
            self.reports.append(mint)
            return httpx.Response(200, json=REPORTS[mint])
        if host == "quote-api.jup.ag" and path == "/v6/quote":
            input_mint = request.url.params["inputMint"]
            self.quotes.append((input_mint, request.url.params["outputMint"]))
            return httpx.Response(200, json=BUY_QUOTE if input_mint == WSOL else SELL_QUOTE)
        if host == "api.jup.ag" and path == "/price/v2":
            mint = request.url.params["ids"]
            price = self.prices.pop(0) if len(self.prices) > 1 else self.prices[0]
            return httpx.Response(200, json=price_response(mint, price))
        return httpx.Response(404, json={"error": f"unexpected {request.method} {request.url}"})

    @property
    def buys(self) -> list[tuple[str, str]]:
        return [q for q in self.quotes if q[0] == WSOL]

    @property
    def sells(self) -> list[tuple[str, str]]:
        return [q for q in self.quotes if q[1] == WSOL]


class StreamSocket:
    """Yields its messages, then stays open until closed."""

    def __init__(self, messages: list[dict]):
        self.messages = [json.dumps(m) for m in messages]
        self.sent: list[str] = []
        self._closed = asyncio.Event()

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self._closed.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        await self._closed.wait()


def _config() -> SniperConfig:
    return SniperConfig(
        queue=QueueSettings(tx_delay_seconds=0, tx_fetch_delay_seconds=0),
        swap=SwapSettings(initial_buy_delay_seconds=0, simulation_mode=True),
        exit=ExitSettings(poll_interval_seconds=0.05),
        state_file=None,
    )


def _recording_bus() -> tuple[EventBus, dict[str, list]]:
    bus = EventBus()
    seen: dict[str, list] = {"new_token": [], "position_opened": [], "position_closed": []}
    bus.subscribe("new_token", lambda candidate, verdict: seen["new_token"].append((candidate, verdict)))
    bus.subscribe("position_opened", lambda position: seen["position_opened"].append(position))
    bus.subscribe(
        "position_closed",
        lambda position, reason, pnl_percent: seen["position_closed"].append((position, reason, pnl_percent)),
    )
    return bus, seen


class TestPipeline:
    @pytest.mark.asyncio
    async def test_step_by_step(self):
        market = FakeMarket(prices=[1.0, 1.2])
        bus, seen = _recording_bus()
        sniper = Sniper(_config(), "wss://example.invalid", bus=bus, transport=httpx.MockTransport(market))
        sniper.supervisor.state = ConnectionState.SUBSCRIBED

        accepted = [
            sniper.supervisor.handle_message(json.dumps(m))
            for m in (MALFORMED_NOTIFICATION, POOL_NOTIFICATION_T, POOL_NOTIFICATION_U)
        ]
        assert accepted == [False, True, True]

        outcomes = []
        while len(sniper.queue):
            outcomes.append(await sniper.batch.process(sniper.queue.pop()))
        assert outcomes == ["rejected", "opened"]

        rejected = seen["new_token"][0]
        assert rejected[0].token_mint == TOKEN_T
        assert rejected[1].reasons == ["low_liquidity"]
        assert market.buys == [(WSOL, TOKEN_U)]
        assert len(seen["position_opened"]) == 1
        position = seen["position_opened"][0]
        assert position.size == int(BUY_QUOTE["outAmount"])
        assert position.entry_price == 1.0

        closed = await sniper.tracker.poll_once()

        assert [p.token_mint for p in closed] == [TOKEN_U]
        assert market.sells == [(TOKEN_U, WSOL)]
        _, reason, pnl = seen["position_closed"][0]
        assert reason is ExitReason.TAKE_PROFIT
        assert pnl == pytest.approx(20.0)
        await sniper.close()

    @pytest.mark.asyncio
    async def test_full_run(self):
        market = FakeMarket(prices=[1.0, 1.2])
        bus, seen = _recording_bus()
        ws = StreamSocket([SUBSCRIBE_ACK, MALFORMED_NOTIFICATION, POOL_NOTIFICATION_T, POOL_NOTIFICATION_U])

        async def connect(url):
            return ws

        sniper = Sniper(
            _config(), "wss://example.invalid", bus=bus, connect=connect,
            transport=httpx.MockTransport(market),
        )
        bus.subscribe("position_closed", lambda position, reason, pnl_percent: sniper.request_stop())

        exit_code = await asyncio.wait_for(sniper.run(), timeout=10)

        assert exit_code == 0
        assert json.loads(ws.sent[0])["method"] == "logsSubscribe"
        assert market.reports == [TOKEN_T, TOKEN_U]
        assert len(market.buys) == 1
        assert len(market.sells) == 1
        assert len(seen["position_opened"]) == 1
        assert [r for _, r, _ in seen["position_closed"]] == [ExitReason.TAKE_PROFIT]
        assert sniper.tracker.positions == []

    @pytest.mark.asyncio
    async def test_crashed_task_stops_the_run(self):
        ws = StreamSocket([SUBSCRIBE_ACK])

        async def connect(url):
            return ws

        sniper = Sniper(
            _config(), "wss://example.invalid", connect=connect,
            transport=httpx.MockTransport(FakeMarket(prices=[1.0])),
        )
        sniper.tracker.run = AsyncMock(side_effect=RuntimeError("tracker bug"))

        exit_code = await asyncio.wait_for(sniper.run(), timeout=10)

        assert exit_code == 1
        assert sniper.fatal is True
        assert sniper.stop.is_set()
