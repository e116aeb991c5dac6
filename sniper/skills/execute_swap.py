"""Manual swap — CLI entry point.

Runs one buy or sell through the SwapExecutor (Jupiter quote, isolated
signer, Helius RPC, confirmation polling).

Usage:
    python3 -m sniper.skills.execute_swap --direction buy --token <MINT> --amount <LAMPORTS>
    python3 -m sniper.skills.execute_swap --direction sell --token <MINT> --amount <TOKEN_UNITS>
    python3 -m sniper.skills.execute_swap --direction buy --token <MINT> --amount <LAMPORTS> --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from sniper.clients.helius import HeliusClient
from sniper.clients.jupiter import JupiterClient
from sniper.config import ConfigError, SniperConfig, load_config
from sniper.executor.swap import SwapExecutor
from sniper.signer.keychain import verify_isolation
from sniper.utils.rate_limiter import RateLimiter


async def execute_swap(
    direction: str,
    token_mint: str,
    amount: int,
    config: SniperConfig,
    dry_run: bool = False,
    slippage_bps: int | None = None,
) -> dict[str, Any]:
    """Execute one swap and return a JSON-ready result."""
    isolation = verify_isolation()
    if isolation["status"] == "VIOLATION" and any("CRITICAL" in v for v in isolation["violations"]):
        return {
            "status": "FAILED",
            "direction": direction,
            "token_mint": token_mint,
            "error": f"KEY ISOLATION VIOLATION: {isolation['message']}",
        }

    update: dict[str, Any] = {"simulation_mode": dry_run or config.swap.simulation_mode}
    if slippage_bps is not None:
        update["slippage_bps"] = slippage_bps
    settings = config.swap.model_copy(update=update)

    limiter = RateLimiter(config.rate_limits)
    jupiter = JupiterClient(limiter=limiter, timeout=settings.request_timeout_seconds)
    helius = HeliusClient(limiter=limiter, timeout=settings.request_timeout_seconds)
    executor = SwapExecutor(settings, jupiter, helius)
    try:
        if direction == "buy":
            result = await executor.buy(config.paired_asset_mint, token_mint, amount)
        else:
            result = await executor.sell(config.paired_asset_mint, token_mint, amount)
    finally:
        await jupiter.close()
        await helius.close()

    if not result.success:
        status = "FAILED"
    elif result.simulated:
        status = "DRY_RUN"
    else:
        status = "SUCCESS"
    return {
        "status": status,
        "direction": direction,
        "token_mint": token_mint,
        "amount_in": str(result.in_amount),
        "amount_out": str(result.out_amount),
        "slippage_bps": settings.slippage_bps,
        "tx_signature": result.tx_id,
        "error": result.error,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Manual swap through the sniper's executor")
    parser.add_argument("--direction", required=True, choices=["buy", "sell"])
    parser.add_argument("--token", required=True, help="Token mint address")
    parser.add_argument(
        "--amount", required=True, type=int,
        help="Base units (lamports for buy, token units for sell)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Quote only")
    parser.add_argument("--slippage", type=int, default=None, help="Max slippage in bps")
    parser.add_argument("--config", default=None, help="Path to sniper.yaml")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(json.dumps({"status": "ERROR", "error": str(e)}, indent=2))
        sys.exit(1)

    result = asyncio.run(execute_swap(
        direction=args.direction,
        token_mint=args.token,
        amount=args.amount,
        config=config,
        dry_run=args.dry_run,
        slippage_bps=args.slippage,
    ))
    print(json.dumps(result, indent=2))
    sys.exit(0 if result["status"] in ("DRY_RUN", "SUCCESS") else 1)


if __name__ == "__main__":
    main()
