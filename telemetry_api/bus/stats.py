"""Bus processing statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..domain.reading import isoformat, utcnow


@dataclass
class BusStats:
    received: int = 0
    processed: int = 0
    failed: int = 0
    unrouted: int = 0
    reconnects: int = 0
    last_message_at: Optional[datetime] = None
    started_at: datetime = field(default_factory=utcnow)

    def __str__(self) -> str:
        return f"BusStats: received={self.received} processed={self.processed} failed={self.failed}"

    def to_dict(self) -> dict:
        return {
            "received": self.received,
            "processed": self.processed,
            "failed": self.failed,
            "unrouted": self.unrouted,
            "reconnects": self.reconnects,
            "last_message_at": isoformat(self.last_message_at),
            "started_at": isoformat(self.started_at),
            "success_rate": self._success_rate(),
        }

    def _success_rate(self) -> float:
        total = self.processed + self.failed
        if total == 0:
            return 1.0
        return self.processed / total
