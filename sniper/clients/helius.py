"""Helius API client — parsed transactions + Solana RPC.

Provides:
- Enhanced transaction lookup (pool-creation decoding)
- sendTransaction / getSignatureStatuses with a fallback RPC chain
"""

from __future__ import annotations

import os
from typing import Any

import httpx

from sniper.clients.base import BaseClient, RPCFallbackClient
from sniper.utils.rate_limiter import RateLimiter

PUBLIC_RPC_URL = "https://api.mainnet-beta.solana.com"


class HeliusClient:
    """Helius Developer tier: Enhanced Transactions API + RPC."""

    def __init__(
        self,
        api_key: str | None = None,
        limiter: RateLimiter | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or os.environ.get("HELIUS_API_KEY", "")
        self._api = BaseClient(
            base_url="https://api.helius.xyz/v0",
            timeout=timeout,
            provider_name="helius",
            limiter=limiter,
            resource="tx-details",
            params={"api-key": self.api_key},
            transport=transport,
        )
        self._rpc = RPCFallbackClient(
            [
                {
                    "provider": "helius",
                    "url": "https://mainnet.helius-rpc.com",
                    "params": {"api-key": self.api_key},
                    "timeout_seconds": timeout,
                },
                {
                    "provider": "public",
                    "url": PUBLIC_RPC_URL,
                    "timeout_seconds": 20,
                },
            ],
            limiter=limiter,
            transport=transport,
        )

    async def get_parsed_transaction(self, signature: str) -> dict[str, Any] | None:
        """Parsed transaction for ``signature``; None while Helius has not indexed it."""
        result = await self._api.post("/transactions", json_data={"transactions": [signature]})
        if isinstance(result, list) and result and isinstance(result[0], dict):
            return result[0]
        return None

    async def send_transaction(self, signed_tx_base64: str) -> str:
        """Submit a signed transaction; returns its signature."""
        return await self._rpc.call(
            "sendTransaction",
            [
                signed_tx_base64,
                {"encoding": "base64", "skipPreflight": True, "maxRetries": 2},
            ],
        )

    async def get_signature_status(self, signature: str) -> dict[str, Any] | None:
        """Status entry for one signature (None if the cluster has not seen it)."""
        result = await self._rpc.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        values = (result or {}).get("value") or []
        return values[0] if values else None

    async def close(self) -> None:
        await self._api.close()
        await self._rpc.close()
