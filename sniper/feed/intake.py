"""Intake path: validator -> deduplicator -> event queue."""

from __future__ import annotations

import logging

from sniper.feed.dedup import Deduplicator
from sniper.feed.event_queue import EventQueue
from sniper.feed.validator import SignatureValidator
from sniper.models import Event

log = logging.getLogger(__name__)


class EventIntake:
    def __init__(self, validator: SignatureValidator, dedup: Deduplicator, queue: EventQueue):
        self.validator = validator
        self.dedup = dedup
        self.queue = queue

    def submit(self, event: Event) -> bool:
        """Queue ``event`` if its signature is valid and new. True when queued."""
        if not self.validator(event.event_id):
            log.debug("Dropped invalid signature %r", event.event_id[:16])
            return False
        if not self.dedup.check_and_remember(event.event_id):
            log.debug("Dropped duplicate %s", event.event_id[:16])
            return False
        evicted = self.queue.push(event)
        if evicted is not None:
            log.warning("Queue full (%d), evicted oldest %s", self.queue.capacity, evicted.event_id[:16])
        log.info("Queued new pool tx %s (%d pending)", event.event_id, len(self.queue))
        return True
