"""Safety screener — pre-trade token checks against a rugcheck report.

Checks run in a fixed order and stop at the first critical failure:
1. Authorities / status (mint, freeze, rugged, mutable metadata)
2. Liquidity floor
3. Holder concentration and insiders
4. Identity (blocked / returning names, symbols, creators; flagged risks)
Tokens that clear all four are scored on soft warnings; the verdict passes
when the warning score stays within ``max_score``.
"""

from __future__ import annotations

import logging

from sniper.clients.base import APIError
from sniper.clients.rugcheck import RugCheckClient
from sniper.config import SafetyPolicy
from sniper.models import CandidateToken, SafetyVerdict, TokenReport

log = logging.getLogger(__name__)

PUMP_FUN_SUFFIX = "pump"


class SafetyScreener:
    def __init__(self, policy: SafetyPolicy, rugcheck: RugCheckClient):
        self.policy = policy
        self._rugcheck = rugcheck
        self._seen_names: set[str] = set()
        self._seen_creators: set[str] = set()

    async def assess(self, candidate: CandidateToken) -> SafetyVerdict:
        mint = candidate.token_mint
        if self.policy.ignore_pump_fun and mint.endswith(PUMP_FUN_SUFFIX):
            log.info("REJECT %s: pump_fun_ignored", mint)
            return SafetyVerdict(passed=False, reasons=["pump_fun_ignored"])

        try:
            report = await self._rugcheck.get_token_report(mint)
        except APIError as e:
            log.warning("Safety report unavailable for %s: %s", mint, e)
            return SafetyVerdict(passed=False, reasons=["report_unavailable"])

        for check in (
            self._check_authorities,
            self._check_liquidity,
            self._check_holders,
            self._check_identity,
        ):
            reason = check(report)
            if reason:
                self._remember(report)
                log.info("REJECT %s (%s): %s", mint, report.symbol or "?", reason)
                return SafetyVerdict(passed=False, reasons=[reason])

        self._remember(report)
        score, warnings = self._score_warnings(report)
        passed = score <= self.policy.max_score
        reasons = warnings if passed else [*warnings, "risk_score"]
        log.info(
            "%s %s (%s): score %d/%d %s",
            "PASS" if passed else "REJECT", mint, report.symbol or "?",
            score, self.policy.max_score, ",".join(warnings) or "-",
        )
        return SafetyVerdict(passed=passed, score=score, reasons=reasons)

    def _check_authorities(self, report: TokenReport) -> str | None:
        p = self.policy
        if report.mint_authority and not p.allow_mint_authority:
            return "mint_authority"
        if report.freeze_authority and not p.allow_freeze_authority:
            return "freeze_authority"
        if report.rugged and not p.allow_rugged:
            return "rugged"
        if report.mutable and not p.allow_mutable:
            return "mutable_metadata"
        return None

    def _check_liquidity(self, report: TokenReport) -> str | None:
        if report.total_market_liquidity < self.policy.min_liquidity:
            return "low_liquidity"
        return None

    def _check_holders(self, report: TokenReport) -> str | None:
        holders = report.top_holders
        if self.policy.exclude_lp_from_topholders:
            lp = set(report.lp_accounts)
            holders = [h for h in holders if h.address not in lp]
        if any(h.pct > self.policy.max_top_holder_pct for h in holders):
            return "holder_concentration"
        if not self.policy.allow_insider_topholders and any(h.insider for h in holders):
            return "insider_holders"
        return None

    def _check_identity(self, report: TokenReport) -> str | None:
        p = self.policy
        name = report.name.strip().lower()
        symbol = report.symbol.strip().lower()
        if name and name in {n.lower() for n in p.block_names}:
            return "blocked_name"
        if symbol and symbol in {s.lower() for s in p.block_symbols}:
            return "blocked_symbol"
        if p.block_returning_names and name and name in self._seen_names:
            return "returning_name"
        if p.block_returning_creators and report.creator and report.creator in self._seen_creators:
            return "returning_creator"
        if set(report.risk_names) & set(p.blocked_risks):
            return "flagged_risk"
        return None

    def _score_warnings(self, report: TokenReport) -> tuple[int, list[str]]:
        p = self.policy
        warnings: list[str] = []
        if report.total_markets < p.min_total_markets:
            warnings.append("few_markets")
        if report.total_lp_providers < p.min_total_lp_providers:
            warnings.append("few_lp_providers")
        if p.max_report_score > 0 and report.score > p.max_report_score:
            warnings.append("high_report_score")
        return len(warnings), warnings

    def _remember(self, report: TokenReport) -> None:
        if report.name.strip():
            self._seen_names.add(report.name.strip().lower())
        if report.creator:
            self._seen_creators.add(report.creator)
