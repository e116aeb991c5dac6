"""Decoding for the two shapes the pipeline receives.

- parse_notification(): one raw websocket message -> control / malformed /
  irrelevant / Event. Pure, no I/O.
- TransactionDecoder: Event -> CandidateToken via the Helius parsed
  transaction API (the notification carries logs, not accounts).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from sniper.clients.helius import HeliusClient
from sniper.config import QueueSettings
from sniper.models import CandidateToken, Event
from sniper.utils.retry import RetryPolicy, retry_with_backoff

log = logging.getLogger(__name__)

# Account positions inside Raydium's initialize2 instruction.
POOL_ACCOUNT_INDEX = 4
MINT_A_INDEX = 8
MINT_B_INDEX = 9


class MessageKind(str, Enum):
    CONTROL = "control"
    MALFORMED = "malformed"
    IRRELEVANT = "irrelevant"
    EVENT = "event"


@dataclass(frozen=True)
class DecodedMessage:
    kind: MessageKind
    event: Event | None = None
    detail: str = ""


class TransactionNotFoundError(Exception):
    """Helius has not indexed the transaction yet."""


def parse_notification(raw: str | bytes | dict[str, Any], pool_create_marker: str) -> DecodedMessage:
    """Classify one stream message."""
    if isinstance(raw, dict):
        msg = raw
    else:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            return DecodedMessage(MessageKind.MALFORMED, detail="invalid json")
    if not isinstance(msg, dict):
        return DecodedMessage(MessageKind.MALFORMED, detail="not an object")

    if "error" in msg:
        return DecodedMessage(MessageKind.CONTROL, detail=f"error: {msg['error']}")
    if msg.get("method") != "logsNotification":
        if "result" in msg:
            return DecodedMessage(MessageKind.CONTROL, detail=f"subscription ack: {msg['result']}")
        return DecodedMessage(MessageKind.MALFORMED, detail=f"unexpected method {msg.get('method')!r}")

    value: Any = msg
    for key in ("params", "result", "value"):
        value = value.get(key) if isinstance(value, dict) else None
    if not isinstance(value, dict):
        return DecodedMessage(MessageKind.MALFORMED, detail="notification without a value object")
    signature = value.get("signature")
    logs = value.get("logs")
    if not isinstance(signature, str) or not isinstance(logs, list):
        return DecodedMessage(MessageKind.MALFORMED, detail="missing signature or logs")

    if value.get("err") is not None:
        return DecodedMessage(MessageKind.IRRELEVANT, detail="failed transaction")
    if not any(isinstance(line, str) and pool_create_marker in line for line in logs):
        return DecodedMessage(MessageKind.IRRELEVANT)

    return DecodedMessage(
        MessageKind.EVENT,
        event=Event(event_id=signature, logs=tuple(str(line) for line in logs), raw_payload=msg),
    )


def extract_candidate(
    tx: dict[str, Any], program_id: str, paired_asset_mint: str
) -> CandidateToken | None:
    """Pull the new token out of a parsed pool-creation transaction.

    Returns None when the transaction has no matching instruction or the
    pool is not paired with ``paired_asset_mint``.
    """
    for ix in tx.get("instructions") or []:
        if ix.get("programId") != program_id:
            continue
        accounts = ix.get("accounts") or []
        if len(accounts) <= MINT_B_INDEX:
            return None
        mint_a, mint_b = accounts[MINT_A_INDEX], accounts[MINT_B_INDEX]
        if mint_a == paired_asset_mint:
            token = mint_b
        elif mint_b == paired_asset_mint:
            token = mint_a
        else:
            return None
        return CandidateToken(
            token_mint=token,
            paired_asset_mint=paired_asset_mint,
            pool_key=accounts[POOL_ACCOUNT_INDEX],
        )
    return None


class TransactionDecoder:
    """Resolves an Event into a CandidateToken.

    Freshly landed transactions take a few seconds to appear in the parsed
    API, so lookups are polled up to ``tx_fetch_attempts`` times.
    """

    def __init__(
        self,
        helius: HeliusClient,
        settings: QueueSettings,
        program_id: str,
        paired_asset_mint: str,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._helius = helius
        self._program_id = program_id
        self._paired = paired_asset_mint
        self._sleep = sleep
        self._policy = RetryPolicy.fixed(
            retries=settings.tx_fetch_attempts - 1,
            delay=settings.tx_fetch_delay_seconds,
        )

    async def _fetch(self, signature: str) -> dict[str, Any]:
        tx = await self._helius.get_parsed_transaction(signature)
        if not tx:
            raise TransactionNotFoundError(signature)
        return tx

    async def decode(self, event: Event) -> CandidateToken | None:
        try:
            tx = await retry_with_backoff(
                lambda: self._fetch(event.event_id),
                self._policy,
                retry_on=(TransactionNotFoundError,),
                sleep=self._sleep,
            )
        except TransactionNotFoundError:
            log.warning(
                "Transaction %s not available after %d lookups",
                event.event_id, self._policy.max_attempts,
            )
            return None

        candidate = extract_candidate(tx, self._program_id, self._paired)
        if candidate is None:
            log.info("Transaction %s is not a %s-paired pool creation", event.event_id, self._paired[:8])
        return candidate
