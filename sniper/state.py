"""Position persistence.

Active positions are written to state/positions.json after every change so
a restarted sniper resumes tracking instead of buying again.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from sniper.config import WORKSPACE
from sniper.models import Position, PositionStatus


class PositionStore:
    def __init__(self, path: Path | str):
        path = Path(path)
        self.path = path if path.is_absolute() else WORKSPACE / path

    def load(self) -> list[Position]:
        """Load positions from disk. Returns [] if the file doesn't exist."""
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text())
        positions = [Position(**p) for p in data.get("positions", [])]
        # A sell interrupted by a restart is retried on the next poll.
        for p in positions:
            if p.status is PositionStatus.CLOSING:
                p.status = PositionStatus.OPEN
        return [p for p in positions if p.status is PositionStatus.OPEN]

    def save(self, positions: list[Position]) -> None:
        """Write positions to disk atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "positions": [p.model_dump(mode="json") for p in positions],
        }
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, indent=2))
        tmp.rename(self.path)
