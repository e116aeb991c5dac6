"""Configuration loader for the sniper.

Loads config/sniper.yaml once at startup and validates it into an immutable
SniperConfig. Secrets (API keys, signer key location) stay in the
environment / .env and are never part of the YAML.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

WORKSPACE = Path(__file__).resolve().parent.parent
CONFIG_DIR = WORKSPACE / "config"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "sniper.yaml"

RAYDIUM_AMM_PROGRAM = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
WSOL_MINT = "So11111111111111111111111111111111111111112"


class ConfigError(Exception):
    """Configuration file is missing required values or is invalid."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class StreamSettings(_Frozen):
    ws_url: str = ""
    program_id: str = RAYDIUM_AMM_PROGRAM
    commitment: str = "confirmed"
    pool_create_marker: str = "initialize2: InitializeInstruction2"
    handshake_timeout_seconds: float = Field(10.0, gt=0)
    cooldown_seconds: float = Field(5.0, ge=0)
    backoff_base_seconds: float = Field(5.0, gt=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    backoff_cap_seconds: float = Field(60.0, gt=0)
    max_reconnect_attempts: int = Field(5, ge=1)

    @model_validator(mode="after")
    def _cap_above_base(self) -> StreamSettings:
        if self.backoff_cap_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_cap_seconds must be >= backoff_base_seconds")
        return self


class QueueSettings(_Frozen):
    capacity: int = Field(100, ge=1)
    max_concurrent: int = Field(1, ge=1)
    tx_delay_seconds: float = Field(5.0, ge=0)
    dedup_retention_seconds: float = Field(1800.0, gt=0)
    dedup_sweep_interval_seconds: float = Field(300.0, gt=0)
    signature_min_length: int = Field(87, ge=1)
    signature_max_length: int = Field(98, ge=1)
    spam_markers: tuple[str, ...] = ("1111111111111111111111111111111111111111",)
    tx_fetch_attempts: int = Field(10, ge=1)
    tx_fetch_delay_seconds: float = Field(3.0, ge=0)


class RateLimitSettings(_Frozen):
    ceiling: int = Field(..., ge=1)
    window_seconds: float = Field(..., gt=0)


def _default_rate_limits() -> dict[str, RateLimitSettings]:
    return {
        "subscription": RateLimitSettings(ceiling=5, window_seconds=60),
        "tx-details": RateLimitSettings(ceiling=100, window_seconds=60),
        "quote-api": RateLimitSettings(ceiling=100, window_seconds=60),
        "safety-check": RateLimitSettings(ceiling=100, window_seconds=60),
        "price-api": RateLimitSettings(ceiling=100, window_seconds=60),
    }


class SafetyPolicy(_Frozen):
    allow_mint_authority: bool = False
    allow_freeze_authority: bool = False
    allow_mutable: bool = False
    allow_rugged: bool = False
    allow_insider_topholders: bool = False
    exclude_lp_from_topholders: bool = True
    max_top_holder_pct: float = Field(30.0, ge=0)
    min_liquidity: float = Field(10000.0, ge=0)
    block_names: tuple[str, ...] = ()
    block_symbols: tuple[str, ...] = ()
    block_returning_names: bool = True
    block_returning_creators: bool = True
    blocked_risks: tuple[str, ...] = ()
    min_total_markets: int = Field(1, ge=0)
    min_total_lp_providers: int = Field(1, ge=0)
    max_report_score: float = Field(0.0, ge=0)
    max_score: int = Field(1, ge=0)
    ignore_pump_fun: bool = True


class SwapSettings(_Frozen):
    amount_lamports: int = Field(10_000_000, gt=0)
    slippage_bps: int = Field(200, ge=0, le=10_000)
    priority_fee_max_lamports: int = Field(100_000, ge=0)
    priority_level: str = "high"
    not_tradable_retries: int = Field(3, ge=0)
    not_tradable_delay_seconds: float = Field(2.0, ge=0)
    initial_buy_delay_seconds: float = Field(1.0, ge=0)
    confirm_attempts: int = Field(8, ge=1)
    confirm_interval_seconds: float = Field(4.0, ge=0)
    request_timeout_seconds: float = Field(10.0, gt=0)
    simulation_mode: bool = True


class ExitSettings(_Frozen):
    auto_sell: bool = True
    stop_loss_pct: float = Field(5.0, gt=0)
    take_profit_pct: float = Field(20.0, gt=0)
    poll_interval_seconds: float = Field(5.0, gt=0)
    slippage_bps: int = Field(200, ge=0, le=10_000)
    priority_fee_max_lamports: int = Field(100_000, ge=0)


class SniperConfig(_Frozen):
    stream: StreamSettings = StreamSettings()
    queue: QueueSettings = QueueSettings()
    rate_limits: dict[str, RateLimitSettings] = Field(default_factory=_default_rate_limits)
    safety: SafetyPolicy = SafetyPolicy()
    swap: SwapSettings = SwapSettings()
    exit: ExitSettings = ExitSettings()
    paired_asset_mint: str = WSOL_MINT
    state_file: str | None = "state/positions.json"

    @model_validator(mode="after")
    def _signature_bounds(self) -> SniperConfig:
        if self.queue.signature_min_length > self.queue.signature_max_length:
            raise ValueError("signature_min_length must be <= signature_max_length")
        return self


def load_config(path: Path | str | None = None) -> SniperConfig:
    """Load and validate the sniper config.

    A missing file yields the defaults; an invalid file raises ConfigError.
    """
    load_dotenv()
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{config_path}: invalid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    try:
        return SniperConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"{config_path}: {e}") from e


def websocket_url(config: SniperConfig) -> str:
    """Resolve the stream URL: config, then HELIUS_WSS_URI, then HELIUS_API_KEY."""
    if config.stream.ws_url:
        return config.stream.ws_url
    explicit = os.environ.get("HELIUS_WSS_URI", "")
    if explicit:
        return explicit
    api_key = os.environ.get("HELIUS_API_KEY", "")
    if not api_key:
        raise ConfigError("No stream URL: set stream.ws_url, HELIUS_WSS_URI or HELIUS_API_KEY")
    return f"wss://mainnet.helius-rpc.com/?api-key={api_key}"
