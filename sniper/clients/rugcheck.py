"""RugCheck API client — token safety reports.

The raw report is large; get_token_report() keeps only what the screener
reads and normalizes missing or null fields to safe defaults.
"""

from __future__ import annotations

from typing import Any

import httpx

from sniper.clients.base import BaseClient
from sniper.models import TokenHolder, TokenReport
from sniper.utils.rate_limiter import RateLimiter


class RugCheckClient:
    """api.rugcheck.xyz v1: token reports."""

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = BaseClient(
            base_url="https://api.rugcheck.xyz/v1",
            timeout=timeout,
            provider_name="rugcheck",
            limiter=limiter,
            resource="safety-check",
            transport=transport,
        )

    async def get_raw_report(self, mint: str) -> dict[str, Any]:
        return await self._client.get(f"/tokens/{mint}/report")

    async def get_token_report(self, mint: str) -> TokenReport:
        """Fetch and normalize the report for ``mint``."""
        return parse_report(mint, await self.get_raw_report(mint))

    async def close(self) -> None:
        await self._client.close()


def parse_report(mint: str, data: dict[str, Any]) -> TokenReport:
    token = data.get("token") or {}
    meta = data.get("tokenMeta") or {}
    markets = data.get("markets") or []

    lp_accounts: list[str] = []
    for market in markets:
        for key in ("liquidityA", "liquidityB", "pubkey"):
            account = market.get(key)
            if account:
                lp_accounts.append(account)

    holders = [
        TokenHolder(
            address=h.get("address") or "",
            pct=float(h.get("pct") or 0.0),
            insider=bool(h.get("insider")),
        )
        for h in data.get("topHolders") or []
    ]

    return TokenReport(
        mint=mint,
        mint_authority=token.get("mintAuthority"),
        freeze_authority=token.get("freezeAuthority"),
        name=meta.get("name") or "",
        symbol=meta.get("symbol") or "",
        creator=data.get("creator") or "",
        mutable=bool(meta.get("mutable")),
        rugged=bool(data.get("rugged")),
        top_holders=holders,
        lp_accounts=lp_accounts,
        total_markets=len(markets),
        total_lp_providers=int(data.get("totalLPProviders") or 0),
        total_market_liquidity=float(data.get("totalMarketLiquidity") or 0.0),
        risk_names=[r.get("name", "") for r in data.get("risks") or [] if r.get("name")],
        score=float(data.get("score") or 0.0),
    )
