"""Position tracker — post-trade monitoring and exits.

Each held token moves OPEN -> CLOSING -> CLOSED. Every poll prices the open
positions and sells on:
- Take-profit: pnl >= take_profit_pct
- Stop-loss:   pnl <= -stop_loss_pct
A failed sell puts the position back to OPEN for the next poll.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any

from sniper.clients.base import APIError
from sniper.clients.jupiter import JupiterClient
from sniper.config import ExitSettings
from sniper.events import EventBus
from sniper.executor.swap import SwapExecutor
from sniper.models import CandidateToken, ExitReason, Position, PositionStatus
from sniper.state import PositionStore

log = logging.getLogger(__name__)


def pnl_percent(entry_price: float, current_price: float) -> Decimal:
    """(current - entry) / entry * 100, computed on the decimal prices."""
    entry = Decimal(str(entry_price))
    current = Decimal(str(current_price))
    return (current - entry) / entry * 100


def exit_reason(pnl: Decimal, take_profit_pct: float, stop_loss_pct: float) -> ExitReason | None:
    if pnl >= Decimal(str(take_profit_pct)):
        return ExitReason.TAKE_PROFIT
    if pnl <= -Decimal(str(stop_loss_pct)):
        return ExitReason.STOP_LOSS
    return None


class PositionTracker:
    def __init__(
        self,
        settings: ExitSettings,
        prices: JupiterClient,
        executor: SwapExecutor,
        bus: EventBus | None = None,
        store: PositionStore | None = None,
        stop: asyncio.Event | None = None,
    ):
        self.settings = settings
        self._prices = prices
        self._executor = executor
        self._bus = bus
        self._store = store
        self._stop = stop
        self._positions: dict[str, Position] = {}

    @property
    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def get(self, token_mint: str) -> Position | None:
        return self._positions.get(token_mint)

    def has_position(self, token_mint: str) -> bool:
        return token_mint in self._positions

    def restore(self) -> list[Position]:
        """Reload persisted positions (run once before polling starts)."""
        if self._store is None:
            return []
        restored = self._store.load()
        for position in restored:
            self._positions.setdefault(position.token_mint, position)
        if restored:
            log.info("Restored %d open positions", len(restored))
        return restored

    def _stopping(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save(self.positions)
        except OSError as e:
            log.error("Could not save positions to %s: %s", self._store.path, e)

    async def open_position(
        self,
        candidate: CandidateToken,
        size: int,
        buy_tx_id: str = "",
        entry_price: float | None = None,
    ) -> Position | None:
        """Start tracking a bought token. None if the mint is already held."""
        mint = candidate.token_mint
        if mint in self._positions:
            log.warning("Already tracking %s, not opening a second position", mint)
            return None
        if entry_price is not None and entry_price <= 0:
            log.warning("Ignoring non-positive entry price %s for %s", entry_price, mint)
            entry_price = None

        position = Position(
            token_mint=mint,
            paired_asset_mint=candidate.paired_asset_mint,
            entry_price=entry_price,
            size=size,
            buy_tx_id=buy_tx_id,
        )
        self._positions[mint] = position

        if position.entry_price is None:
            try:
                price = await self._prices.get_price(mint, candidate.paired_asset_mint)
            except APIError as e:
                log.warning("Entry price lookup failed for %s: %s", mint, e)
                price = None
            except Exception:
                log.exception("Entry price lookup raised for %s", mint)
                price = None
            if price is not None and price <= 0:
                log.warning("Ignoring non-positive entry price %s for %s", price, mint)
                price = None
            # A poll that ran during the lookup may already have set it.
            if position.entry_price is None:
                position.entry_price = price
        self._persist()

        log.info(
            "OPENED %s size=%d entry=%s tx=%s",
            mint, size, position.entry_price if position.entry_price is not None else "pending",
            buy_tx_id or "-",
        )
        if self._bus is not None:
            self._bus.position_opened(position)
        return position

    async def poll_once(self) -> list[Position]:
        """Evaluate every open position once; returns the ones closed."""
        closed: list[Position] = []
        for position in list(self._positions.values()):
            if self._stopping():
                log.info("Stopping, skipping remaining position checks")
                break
            if position.status is not PositionStatus.OPEN:
                continue
            try:
                if await self._evaluate(position):
                    closed.append(position)
            except Exception:
                log.exception("Evaluating %s failed", position.token_mint)
        return closed

    async def _evaluate(self, position: Position) -> bool:
        mint = position.token_mint
        try:
            price = await self._prices.get_price(mint, position.paired_asset_mint)
        except APIError as e:
            log.warning("Price lookup failed for %s: %s", mint, e)
            return False
        if price is None or price <= 0:
            log.debug("No price for %s yet", mint)
            return False
        # A concurrent pass or a manual close may have moved it on while we waited.
        if position.status is not PositionStatus.OPEN:
            return False

        position.last_price = price
        if position.entry_price is None or position.entry_price <= 0:
            position.entry_price = price
            log.info("%s entry price set from first quote: %.10g", mint, price)
            self._persist()
            return False

        pnl = pnl_percent(position.entry_price, price)
        position.pnl_pct = float(pnl)
        log.info(
            "%s price %.10g entry %.10g pnl %+.2f%%",
            mint, price, position.entry_price, position.pnl_pct,
        )
        if not self.settings.auto_sell:
            return False

        reason = exit_reason(pnl, self.settings.take_profit_pct, self.settings.stop_loss_pct)
        if reason is None:
            return False
        return await self._exit(position, reason, pnl)

    async def close_position(self, token_mint: str, reason: ExitReason = ExitReason.MANUAL) -> bool:
        """Sell a position now. False if it is not open or the sell fails."""
        position = self._positions.get(token_mint)
        if position is None or position.status is not PositionStatus.OPEN:
            return False
        return await self._exit(position, reason, Decimal(str(position.pnl_pct)))

    async def _exit(self, position: Position, reason: ExitReason, pnl: Decimal) -> bool:
        if position.status is not PositionStatus.OPEN:
            return False
        if self._stopping():
            log.info("Stopping, not selling %s (%s)", position.token_mint, reason.value)
            return False
        position.status = PositionStatus.CLOSING
        log.info("EXIT %s: %s at %+.2f%%", position.token_mint, reason.value, float(pnl))

        try:
            result = await self._executor.sell(
                position.paired_asset_mint,
                position.token_mint,
                position.size,
                slippage_bps=self.settings.slippage_bps,
                priority_fee_max_lamports=self.settings.priority_fee_max_lamports,
            )
        except Exception as e:
            log.warning("Sell raised for %s: %r", position.token_mint, e)
            result = None

        if result is None or not result.success:
            position.status = PositionStatus.OPEN
            log.warning(
                "Sell failed for %s (%s), keeping position open",
                position.token_mint, result.error if result is not None else "exception",
            )
            return False

        position.status = PositionStatus.CLOSED
        self._positions.pop(position.token_mint, None)
        self._persist()
        log.info(
            "CLOSED %s: %s pnl %+.2f%% tx=%s",
            position.token_mint, reason.value, float(pnl), result.tx_id or "-",
        )
        if self._bus is not None:
            self._bus.position_closed(position, reason, float(pnl))
        return True

    async def run(self, stop: asyncio.Event) -> None:
        """Poll every ``poll_interval_seconds`` until ``stop`` is set."""
        self._stop = stop
        while not stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def summary(self) -> dict[str, Any]:
        return {
            "open_positions": len(self._positions),
            "positions": [p.model_dump(mode="json") for p in self._positions.values()],
        }
