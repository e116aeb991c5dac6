"""Swap executor — Jupiter swaps signed by the isolated signer.

Flow per swap:
1. Jupiter quote (retried only while the token is not yet tradable)
2. Unsigned swap transaction from Jupiter
3. Signature from the signer subprocess
4. sendTransaction over the Helius / public RPC chain
5. Poll getSignatureStatuses until confirmed or out of attempts

Never touches position state; every failure comes back as
TxResult(success=False).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sniper.clients.base import APIError
from sniper.clients.helius import HeliusClient
from sniper.clients.jupiter import JupiterClient, TokenNotTradableError
from sniper.config import SwapSettings
from sniper.models import TxResult
from sniper.signer.keychain import SignerError, get_public_key, sign_transaction
from sniper.utils.retry import RetryPolicy, retry_with_backoff

log = logging.getLogger(__name__)

CONFIRMED_STATUSES = ("confirmed", "finalized")


class SwapExecutor:
    def __init__(
        self,
        settings: SwapSettings,
        jupiter: JupiterClient,
        helius: HeliusClient,
        signer: Callable[[str], str] = sign_transaction,
        wallet_pubkey: str | None = None,
        pubkey_source: Callable[[], str] = get_public_key,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self._jupiter = jupiter
        self._helius = helius
        self._signer = signer
        self._wallet_pubkey = wallet_pubkey
        self._pubkey_source = pubkey_source
        self._sleep = sleep
        self._quote_policy = RetryPolicy.fixed(
            retries=settings.not_tradable_retries,
            delay=settings.not_tradable_delay_seconds,
        )

    async def buy(self, paired_mint: str, token_mint: str, amount: int) -> TxResult:
        """Spend ``amount`` base units of ``paired_mint`` on ``token_mint``."""
        return await self._swap(
            "buy", paired_mint, token_mint, amount,
            self.settings.slippage_bps, self.settings.priority_fee_max_lamports,
        )

    async def sell(
        self,
        paired_mint: str,
        token_mint: str,
        amount: int,
        slippage_bps: int | None = None,
        priority_fee_max_lamports: int | None = None,
    ) -> TxResult:
        """Sell ``amount`` base units of ``token_mint`` back into ``paired_mint``."""
        return await self._swap(
            "sell", token_mint, paired_mint, amount,
            self.settings.slippage_bps if slippage_bps is None else slippage_bps,
            self.settings.priority_fee_max_lamports
            if priority_fee_max_lamports is None else priority_fee_max_lamports,
        )

    async def _swap(
        self,
        side: str,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        priority_fee_max_lamports: int,
    ) -> TxResult:
        failed = TxResult(
            success=False, side=side, input_mint=input_mint, output_mint=output_mint, in_amount=amount,
        )

        try:
            quote = await retry_with_backoff(
                lambda: self._jupiter.get_quote(input_mint, output_mint, amount, slippage_bps),
                self._quote_policy,
                retry_on=(TokenNotTradableError,),
                sleep=self._sleep,
            )
        except TokenNotTradableError as e:
            log.warning(
                "%s gave up after %d quote attempts: %s",
                side.upper(), self._quote_policy.max_attempts, e,
            )
            return failed.model_copy(update={"error": f"not tradable: {e}"})
        except APIError as e:
            log.warning("%s quote failed for %s -> %s: %s", side.upper(), input_mint, output_mint, e)
            return failed.model_copy(update={"error": f"quote failed: {e}"})

        out_amount = int(quote.get("outAmount") or 0)

        if self.settings.simulation_mode:
            log.info(
                "[SIMULATION] %s %d %s -> %d %s (impact %s%%)",
                side.upper(), amount, input_mint[:8], out_amount, output_mint[:8],
                quote.get("priceImpactPct", "?"),
            )
            return TxResult(
                success=True, side=side, input_mint=input_mint, output_mint=output_mint,
                in_amount=amount, out_amount=out_amount, simulated=True,
            )

        try:
            pubkey = await self._pubkey()
            swap = await self._jupiter.get_swap_transaction(
                quote,
                pubkey,
                priority_fee_max_lamports=priority_fee_max_lamports,
                priority_level=self.settings.priority_level,
            )
            unsigned_tx = swap.get("swapTransaction", "")
            if not unsigned_tx:
                return failed.model_copy(update={"error": "Jupiter returned no swap transaction"})
            signed_tx = await asyncio.to_thread(self._signer, unsigned_tx)
            tx_id = await self._helius.send_transaction(signed_tx)
        except SignerError as e:
            log.warning("%s %s: signer error: %s", side.upper(), output_mint, e)
            return failed.model_copy(update={"error": f"signer error: {e}"})
        except APIError as e:
            log.warning("%s %s: submission failed: %s", side.upper(), output_mint, e)
            return failed.model_copy(update={"error": f"submission failed: {e}"})

        if not tx_id:
            return failed.model_copy(update={"error": "RPC returned no signature"})

        error = await self._confirm(tx_id)
        if error:
            log.warning("%s tx %s not confirmed: %s", side.upper(), tx_id, error)
            return failed.model_copy(update={"tx_id": tx_id, "error": error})

        log.info("%s confirmed: %s (%d -> %d)", side.upper(), tx_id, amount, out_amount)
        return TxResult(
            success=True, side=side, input_mint=input_mint, output_mint=output_mint,
            tx_id=tx_id, in_amount=amount, out_amount=out_amount,
        )

    async def _pubkey(self) -> str:
        if not self._wallet_pubkey:
            self._wallet_pubkey = await asyncio.to_thread(self._pubkey_source)
        return self._wallet_pubkey

    async def _confirm(self, tx_id: str) -> str:
        """Empty string once confirmed, otherwise the reason it was not."""
        for _ in range(self.settings.confirm_attempts):
            await self._sleep(self.settings.confirm_interval_seconds)
            try:
                status = await self._helius.get_signature_status(tx_id)
            except APIError as e:
                log.debug("Status lookup for %s failed: %s", tx_id, e)
                continue
            if not status:
                continue
            if status.get("err") is not None:
                return f"landed but failed on-chain: {status['err']}"
            if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                return ""
        waited = self.settings.confirm_attempts * self.settings.confirm_interval_seconds
        return f"not confirmed after {waited:.0f}s"
