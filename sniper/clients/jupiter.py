"""Jupiter API client — swap quotes, swap transactions and spot prices.

Jupiter is the DEX aggregator every buy and sell is routed through.
"""

from __future__ import annotations

from typing import Any

import httpx

from sniper.clients.base import APIError, BaseClient
from sniper.config import WSOL_MINT
from sniper.utils.rate_limiter import RateLimiter

QUOTE_API_URL = "https://quote-api.jup.ag/v6"
PRICE_API_URL = "https://api.jup.ag/price"

_NOT_TRADABLE_MARKERS = ("TOKEN_NOT_TRADABLE", "not tradable")


class TokenNotTradableError(APIError):
    """Jupiter has no route for the mint yet (typically a pool seconds old)."""


def _is_not_tradable(err: APIError) -> bool:
    if err.status_code != 400:
        return False
    body = err.body
    if isinstance(body, dict):
        text = " ".join(str(body.get(k, "")) for k in ("errorCode", "error", "message"))
    else:
        text = str(body or "")
    return any(marker in text for marker in _NOT_TRADABLE_MARKERS)


class JupiterClient:
    """Jupiter v6 API: quotes, swap transactions; Price API v2 for spot prices."""

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = BaseClient(
            base_url=QUOTE_API_URL,
            timeout=timeout,
            provider_name="jupiter",
            limiter=limiter,
            resource="quote-api",
            transport=transport,
        )
        self._prices = BaseClient(
            base_url=PRICE_API_URL,
            timeout=timeout,
            provider_name="jupiter-price",
            limiter=limiter,
            resource="price-api",
            transport=transport,
        )

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 200,
    ) -> dict[str, Any]:
        """Get swap quote with best route.

        Args:
            input_mint: Token mint to sell
            output_mint: Token mint to buy
            amount: Amount in smallest unit (lamports for SOL)
            slippage_bps: Max slippage in basis points (200 = 2%)

        Raises:
            TokenNotTradableError: Jupiter does not route the mint yet.
            APIError: Any other failure.
        """
        try:
            return await self._client.get(
                "/quote",
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount),
                    "slippageBps": slippage_bps,
                },
            )
        except APIError as e:
            if _is_not_tradable(e):
                raise TokenNotTradableError(
                    f"{output_mint if input_mint == WSOL_MINT else input_mint} is not tradable yet",
                    status_code=e.status_code,
                    provider="jupiter",
                    body=e.body,
                ) from e
            raise

    async def get_swap_transaction(
        self,
        quote_response: dict[str, Any],
        user_public_key: str,
        priority_fee_max_lamports: int = 100_000,
        priority_level: str = "high",
    ) -> dict[str, Any]:
        """Get serialized swap transaction from a quote.

        Returns the unsigned transaction to pass to the signer.
        """
        return await self._client.post(
            "/swap",
            json_data={
                "quoteResponse": quote_response,
                "userPublicKey": user_public_key,
                "wrapAndUnwrapSol": True,
                "dynamicComputeUnitLimit": True,
                "prioritizationFeeLamports": {
                    "priorityLevelWithMaxLamports": {
                        "maxLamports": priority_fee_max_lamports,
                        "priorityLevel": priority_level,
                    }
                },
            },
        )

    async def get_price(self, mint: str, vs_token: str = WSOL_MINT) -> float | None:
        """Spot price of ``mint`` in units of ``vs_token``; None if Jupiter has none."""
        data = await self._prices.get("/v2", params={"ids": mint, "vsToken": vs_token})
        prices = data.get("data") if isinstance(data, dict) else None
        entry = prices.get(mint) if isinstance(prices, dict) else None
        if not isinstance(entry, dict) or entry.get("price") in (None, ""):
            return None
        try:
            return float(entry["price"])
        except (TypeError, ValueError):
            return None

    async def close(self) -> None:
        await self._client.close()
        await self._prices.close()
