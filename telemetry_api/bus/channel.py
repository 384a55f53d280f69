"""Bounded inbound channel between the paho network thread and the event loop.

The paho thread never touches this object directly: it schedules
``put_nowait`` with ``loop.call_soon_threadsafe``, so every mutation happens
on the loop thread. When full, the oldest message is dropped and counted.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Optional

from ..domain.reading import utcnow
from ..metrics import BUS_INBOUND_DROPPED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusMessage:
    topic: str
    payload: bytes
    received_at: datetime = field(default_factory=utcnow)


class InboundChannel:
    def __init__(self, max_size: int = 10000):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self._max_size = max_size
        self._items: Deque[BusMessage] = deque()
        self._not_empty = asyncio.Event()
        self._closed = False
        self.enqueued = 0
        self.dropped = 0

    def put_nowait(self, message: BusMessage) -> None:
        if self._closed:
            return
        if len(self._items) >= self._max_size:
            dropped = self._items.popleft()
            self.dropped += 1
            BUS_INBOUND_DROPPED.inc()
            logger.debug("[MQTT] Inbound channel full, dropped oldest topic=%s", dropped.topic)
        self._items.append(message)
        self.enqueued += 1
        self._not_empty.set()

    async def get(self) -> Optional[BusMessage]:
        """Next message in arrival order; None once closed and drained."""
        while not self._items:
            if self._closed:
                return None
            self._not_empty.clear()
            await self._not_empty.wait()
        return self._items.popleft()

    def close(self) -> None:
        self._closed = True
        self._not_empty.set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._items)
