"""Core data model for the sniper pipeline.

Event -> CandidateToken -> SafetyVerdict -> Position, plus the small
value types the components pass between each other.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    COOLING_DOWN = "COOLING_DOWN"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"


class Event(BaseModel):
    """A pool-creation notification taken off the log stream."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    received_at: float = Field(default_factory=time.time)
    logs: tuple[str, ...] = ()
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class CandidateToken(BaseModel):
    """Token decoded from a pool-creation transaction."""

    model_config = ConfigDict(frozen=True)

    token_mint: str
    paired_asset_mint: str
    pool_key: str = ""


class SafetyVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    score: int = 0
    reasons: list[str] = Field(default_factory=list)


class TokenHolder(BaseModel):
    address: str = ""
    pct: float = 0.0
    insider: bool = False


class TokenReport(BaseModel):
    """Normalized rugcheck report: only the fields the screener reads."""

    mint: str
    mint_authority: str | None = None
    freeze_authority: str | None = None
    name: str = ""
    symbol: str = ""
    creator: str = ""
    mutable: bool = False
    rugged: bool = False
    top_holders: list[TokenHolder] = Field(default_factory=list)
    lp_accounts: list[str] = Field(default_factory=list)
    total_markets: int = 0
    total_lp_providers: int = 0
    total_market_liquidity: float = 0.0
    risk_names: list[str] = Field(default_factory=list)
    score: float = 0.0


class TxResult(BaseModel):
    """Outcome of one buy or sell attempt."""

    success: bool
    side: str
    input_mint: str
    output_mint: str
    tx_id: str = ""
    in_amount: int = 0
    out_amount: int = 0
    error: str = ""
    simulated: bool = False


class Position(BaseModel):
    """One held token. Owned by the PositionTracker until it is closed."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    token_mint: str
    paired_asset_mint: str
    entry_price: float | None = None
    size: int
    opened_at: float = Field(default_factory=time.time)
    status: PositionStatus = PositionStatus.OPEN
    buy_tx_id: str = ""
    last_price: float | None = None
    pnl_pct: float = 0.0


class RateWindow(BaseModel):
    """Snapshot of one resource's sliding window."""

    resource: str
    window_start: float
    count: int
    ceiling: int
    window_seconds: float
