"""Outbound events for external consumers (dashboards, notifiers).

Events:
  new_token(candidate, verdict)
  position_opened(position)
  position_closed(position, reason, pnl_percent)
  connection_status(state, detail)

Handlers may be plain functions or coroutines. A failing handler is logged
and never reaches the pipeline.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

from sniper.models import CandidateToken, ConnectionState, ExitReason, Position, SafetyVerdict

log = logging.getLogger(__name__)

EVENT_NAMES = ("new_token", "position_opened", "position_closed", "connection_status")


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, name: str, handler: Callable[..., Any]) -> None:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown event {name!r}; expected one of {EVENT_NAMES}")
        self._handlers[name].append(handler)

    def emit(self, name: str, **payload: Any) -> None:
        for handler in list(self._handlers.get(name, ())):
            try:
                result = handler(**payload)
            except Exception:
                log.exception("Handler %r for %s failed", handler, name)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._reap(name))

    def _reap(self, name: str) -> Callable[[asyncio.Future], None]:
        def done(task: asyncio.Future) -> None:
            self._tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                log.error("Async handler for %s failed: %r", name, task.exception())
        return done

    def new_token(self, candidate: CandidateToken, verdict: SafetyVerdict) -> None:
        self.emit("new_token", candidate=candidate, verdict=verdict)

    def position_opened(self, position: Position) -> None:
        self.emit("position_opened", position=position)

    def position_closed(self, position: Position, reason: ExitReason, pnl_percent: float) -> None:
        self.emit("position_closed", position=position, reason=reason, pnl_percent=pnl_percent)

    def connection_status(self, state: ConnectionState, detail: str = "") -> None:
        self.emit("connection_status", state=state, detail=detail)
