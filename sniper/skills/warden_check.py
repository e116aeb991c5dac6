"""Warden check — one-off safety screen for a token.

Runs the same SafetyScreener the sniper uses against the rugcheck report
and prints the verdict.

Usage:
    python3 -m sniper.skills.warden_check --token <MINT_ADDRESS>
    python3 -m sniper.skills.warden_check --token <MINT_ADDRESS> --config config/sniper.yaml

Exit codes:
    0 = PASS
    1 = FAIL (or config error)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from sniper.clients.rugcheck import RugCheckClient
from sniper.config import ConfigError, SniperConfig, load_config
from sniper.models import CandidateToken
from sniper.screener import SafetyScreener
from sniper.utils.rate_limiter import RateLimiter


async def check_token(mint: str, config: SniperConfig) -> dict[str, Any]:
    """Screen ``mint`` and return a JSON-ready verdict."""
    rugcheck = RugCheckClient(
        limiter=RateLimiter(config.rate_limits),
        timeout=config.swap.request_timeout_seconds,
    )
    screener = SafetyScreener(config.safety, rugcheck)
    try:
        verdict = await screener.assess(
            CandidateToken(token_mint=mint, paired_asset_mint=config.paired_asset_mint)
        )
    finally:
        await rugcheck.close()

    return {
        "status": "PASS" if verdict.passed else "FAIL",
        "token_mint": mint,
        "score": verdict.score,
        "max_score": config.safety.max_score,
        "reasons": verdict.reasons,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Warden — token safety check")
    parser.add_argument("--token", required=True, help="Token mint address")
    parser.add_argument("--config", default=None, help="Path to sniper.yaml")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(json.dumps({"status": "ERROR", "error": str(e)}, indent=2))
        sys.exit(1)

    result = asyncio.run(check_token(args.token, config))
    print(json.dumps(result, indent=2))
    sys.exit(0 if result["status"] == "PASS" else 1)


if __name__ == "__main__":
    main()
