"""Tests for the intake path: validator, deduplicator, event queue, decoding."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from sniper.config import QueueSettings
from sniper.feed.decoder import (
    MessageKind,
    TransactionDecoder,
    extract_candidate,
    parse_notification,
)
from sniper.feed.dedup import Deduplicator
from sniper.feed.event_queue import EventQueue
from sniper.feed.intake import EventIntake
from sniper.feed.validator import SignatureValidator, is_valid_signature
from sniper.models import Event
from tests.mocks.mock_helius import (
    MALFORMED_NOTIFICATION,
    PARSED_TX_NOT_SOL,
    PARSED_TX_T,
    PARSED_TX_U,
    POOL_NOTIFICATION_T,
    POOL_T,
    POOL_U,
    RAYDIUM,
    SIG_SPAM,
    SIG_T,
    SIG_U,
    SUBSCRIBE_ACK,
    SUBSCRIBE_ERROR,
    SWAP_NOTIFICATION,
    TOKEN_T,
    TOKEN_U,
    WSOL,
    logs_notification,
    POOL_LOGS,
)

MARKER = "initialize2: InitializeInstruction2"


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _event(i: int) -> Event:
    return Event(event_id=f"sig-{i}")


class TestSignatureValidator:
    def test_accepts_real_signature_lengths(self):
        assert is_valid_signature(SIG_T)
        assert is_valid_signature("5" * 87)
        assert is_valid_signature("5" * 98)

    def test_rejects_bad_lengths(self):
        assert not is_valid_signature("5" * 86)
        assert not is_valid_signature("5" * 99)
        assert not is_valid_signature("")

    def test_rejects_non_base58(self):
        assert not is_valid_signature("0" * 88)
        assert not is_valid_signature("O" + "5" * 87)
        assert not is_valid_signature("l" + "5" * 87)

    def test_rejects_non_strings(self):
        assert not is_valid_signature(None)
        assert not is_valid_signature(12345)

    def test_spam_marker(self):
        validator = SignatureValidator(QueueSettings())
        assert not validator(SIG_SPAM)
        assert validator(SIG_U)

    def test_configured_bounds(self):
        validator = SignatureValidator(QueueSettings(signature_min_length=88, signature_max_length=88))
        assert validator("5" * 88)
        assert not validator("5" * 87)


class TestDeduplicator:
    def test_first_time_only(self):
        dedup = Deduplicator(retention_seconds=1800, clock=FakeClock())
        assert dedup.check_and_remember("a") is True
        assert dedup.check_and_remember("a") is False
        assert dedup.check_and_remember("a") is False
        assert dedup.seen("a")
        assert not dedup.seen("b")

    def test_expires_after_retention(self):
        clock = FakeClock()
        dedup = Deduplicator(retention_seconds=1800, clock=clock)
        dedup.remember("a")
        clock.now = 1799
        assert dedup.seen("a")
        clock.now = 1800
        assert not dedup.seen("a")
        assert dedup.check_and_remember("a") is True

    def test_sweep_drops_only_expired(self):
        clock = FakeClock()
        dedup = Deduplicator(retention_seconds=100, clock=clock)
        dedup.remember("old")
        clock.now = 50
        dedup.remember("new")
        clock.now = 120

        assert dedup.sweep() == 1
        assert len(dedup) == 1
        assert dedup.seen("new")

    @pytest.mark.asyncio
    async def test_sweeper_stops_on_signal(self):
        dedup = Deduplicator(retention_seconds=100)
        stop = asyncio.Event()
        task = asyncio.create_task(dedup.run_sweeper(stop, interval=0.01))
        await asyncio.sleep(0.03)
        stop.set()
        await asyncio.wait_for(task, timeout=1)


class TestEventQueue:
    def test_bound_and_drop_oldest(self):
        queue = EventQueue(capacity=3)
        evicted = [queue.push(_event(i)) for i in range(5)]

        assert len(queue) == 3
        assert evicted[:3] == [None, None, None]
        assert [e.event_id for e in evicted[3:]] == ["sig-0", "sig-1"]
        assert [e.event_id for e in queue.snapshot()] == ["sig-2", "sig-3", "sig-4"]
        assert queue.evicted == 2

    def test_fifo_pop_batch(self):
        queue = EventQueue(capacity=10)
        for i in range(4):
            queue.push(_event(i))
        assert [e.event_id for e in queue.pop_batch(3)] == ["sig-0", "sig-1", "sig-2"]
        assert [e.event_id for e in queue.pop_batch(3)] == ["sig-3"]
        assert queue.pop_batch(3) == []

    def test_never_exceeds_capacity(self):
        queue = EventQueue(capacity=5)
        for i in range(50):
            queue.push(_event(i))
            assert len(queue) <= 5
        assert [e.event_id for e in queue.snapshot()] == [f"sig-{i}" for i in range(45, 50)]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            EventQueue(capacity=0)

    @pytest.mark.asyncio
    async def test_get_waits_for_push(self):
        queue = EventQueue(capacity=5)
        stop = asyncio.Event()
        waiter = asyncio.create_task(queue.get(stop))
        await asyncio.sleep(0)
        queue.push(_event(7))
        event = await asyncio.wait_for(waiter, timeout=1)
        assert event.event_id == "sig-7"

    @pytest.mark.asyncio
    async def test_get_returns_none_on_stop(self):
        queue = EventQueue(capacity=5)
        stop = asyncio.Event()
        waiter = asyncio.create_task(queue.get(stop))
        await asyncio.sleep(0)
        stop.set()
        assert await asyncio.wait_for(waiter, timeout=1) is None


class TestIntake:
    def _intake(self, capacity: int = 100) -> EventIntake:
        settings = QueueSettings(capacity=capacity)
        return EventIntake(
            SignatureValidator(settings),
            Deduplicator(settings.dedup_retention_seconds, clock=FakeClock()),
            EventQueue(settings.capacity),
        )

    def test_duplicate_never_queued_twice(self):
        intake = self._intake()
        assert intake.submit(Event(event_id=SIG_T)) is True
        assert intake.submit(Event(event_id=SIG_T)) is False
        assert len(intake.queue) == 1

    def test_duplicate_after_pop_still_rejected(self):
        intake = self._intake()
        intake.submit(Event(event_id=SIG_U))
        intake.queue.pop()
        assert intake.submit(Event(event_id=SIG_U)) is False
        assert len(intake.queue) == 0

    def test_invalid_signature_dropped(self):
        intake = self._intake()
        assert intake.submit(Event(event_id=SIG_SPAM)) is False
        assert intake.submit(Event(event_id="short")) is False
        assert len(intake.queue) == 0


class TestParseNotification:
    def test_pool_creation_event(self):
        decoded = parse_notification(json.dumps(POOL_NOTIFICATION_T), MARKER)
        assert decoded.kind is MessageKind.EVENT
        assert decoded.event.event_id == SIG_T
        assert any(MARKER in line for line in decoded.event.logs)

    def test_missing_logs_is_malformed(self):
        assert parse_notification(MALFORMED_NOTIFICATION, MARKER).kind is MessageKind.MALFORMED

    def test_missing_signature_is_malformed(self):
        msg = logs_notification(None, POOL_LOGS)
        assert parse_notification(msg, MARKER).kind is MessageKind.MALFORMED

    def test_invalid_json_is_malformed(self):
        assert parse_notification("{not json", MARKER).kind is MessageKind.MALFORMED
        assert parse_notification("[1, 2]", MARKER).kind is MessageKind.MALFORMED

    def test_non_object_params_are_malformed(self):
        for params in ("oops", ["a", "b"], {"result": "x"}, {"result": {"value": 7}}):
            msg = {"jsonrpc": "2.0", "method": "logsNotification", "params": params}
            assert parse_notification(json.dumps(msg), MARKER).kind is MessageKind.MALFORMED

    def test_other_instruction_is_irrelevant(self):
        assert parse_notification(SWAP_NOTIFICATION, MARKER).kind is MessageKind.IRRELEVANT

    def test_failed_transaction_is_irrelevant(self):
        msg = logs_notification(SIG_T, POOL_LOGS, err={"InstructionError": [0, "Custom"]})
        assert parse_notification(msg, MARKER).kind is MessageKind.IRRELEVANT

    def test_ack_and_error_are_control(self):
        assert parse_notification(SUBSCRIBE_ACK, MARKER).kind is MessageKind.CONTROL
        decoded = parse_notification(SUBSCRIBE_ERROR, MARKER)
        assert decoded.kind is MessageKind.CONTROL
        assert decoded.detail.startswith("error")


class TestExtractCandidate:
    def test_token_first(self):
        candidate = extract_candidate(PARSED_TX_T[0], RAYDIUM, WSOL)
        assert candidate.token_mint == TOKEN_T
        assert candidate.paired_asset_mint == WSOL
        assert candidate.pool_key == POOL_T

    def test_sol_first(self):
        candidate = extract_candidate(PARSED_TX_U[0], RAYDIUM, WSOL)
        assert candidate.token_mint == TOKEN_U
        assert candidate.pool_key == POOL_U

    def test_not_paired_with_sol(self):
        assert extract_candidate(PARSED_TX_NOT_SOL[0], RAYDIUM, WSOL) is None

    def test_no_raydium_instruction(self):
        assert extract_candidate({"instructions": [{"programId": "Other", "accounts": []}]}, RAYDIUM, WSOL) is None


class TestTransactionDecoder:
    @pytest.mark.asyncio
    async def test_polls_until_indexed(self):
        helius = AsyncMock()
        helius.get_parsed_transaction = AsyncMock(side_effect=[None, None, PARSED_TX_U[0]])
        delays: list[float] = []

        async def sleep(seconds):
            delays.append(seconds)

        decoder = TransactionDecoder(
            helius, QueueSettings(tx_fetch_attempts=10, tx_fetch_delay_seconds=3), RAYDIUM, WSOL, sleep=sleep
        )
        candidate = await decoder.decode(Event(event_id=SIG_U))

        assert candidate.token_mint == TOKEN_U
        assert helius.get_parsed_transaction.await_count == 3
        assert delays == [3, 3]

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        helius = AsyncMock()
        helius.get_parsed_transaction = AsyncMock(return_value=None)

        async def sleep(seconds):
            pass

        decoder = TransactionDecoder(
            helius, QueueSettings(tx_fetch_attempts=4, tx_fetch_delay_seconds=3), RAYDIUM, WSOL, sleep=sleep
        )
        assert await decoder.decode(Event(event_id=SIG_U)) is None
        assert helius.get_parsed_transaction.await_count == 4
