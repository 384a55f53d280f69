"""One live push connection and its outbound channel."""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional, Protocol, Set

from ..metrics import BROADCAST_DROPPED

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the broadcaster needs from a socket. FastAPI's WebSocket fits."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Connection:
    """Bounded outbound queue drained by a dedicated sender task.

    When the queue is full the oldest frame is dropped. A send failure marks
    the connection dead and calls ``on_failure`` once.
    """

    def __init__(
        self,
        connection_id: str,
        transport: Transport,
        max_queue: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.id = connection_id
        self.transport = transport
        self.rooms: Set[str] = set()
        self.state = ConnectionState.CONNECTING
        self.connected_at = clock()
        self.sent = 0
        self.dropped = 0
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_queue)
        self._sender: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None
        self._on_failure: Optional[Callable[[str], None]] = None

    def start(self, on_failure: Callable[[str], None]) -> None:
        self._on_failure = on_failure
        self.state = ConnectionState.CONNECTED
        self._sender = asyncio.create_task(self._send_loop(), name=f"ws-sender-{self.id}")

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, frame: str) -> bool:
        """Queue a frame without blocking. False if the connection is closed."""
        if not self.is_open:
            return False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            BROADCAST_DROPPED.inc()
            logger.debug("[WS] Outbound queue full for %s, dropped oldest frame", self.id)
        self._queue.put_nowait(frame)
        return True

    async def _send_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self.transport.send_text(frame)
                self.sent += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info("[WS] Send to %s failed, dropping connection: %s", self.id, e)
                self._fail()
                return
            finally:
                self._queue.task_done()

    def _fail(self) -> None:
        callback, self._on_failure = self._on_failure, None
        if callback is not None:
            callback(self.id)

    def close(self) -> None:
        """Synchronous teardown: stop the sender, forget rooms, close the socket in the background."""
        if self.state == ConnectionState.DISCONNECTED:
            return
        self.state = ConnectionState.DISCONNECTED
        self.rooms.clear()
        self._on_failure = None
        sender = self._sender
        if sender is not None and sender is not asyncio.current_task() and not sender.done():
            sender.cancel()
        self._closer = asyncio.get_running_loop().create_task(self._close_transport())

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception as e:
            # Peer already gone; nothing left to release.
            logger.debug("[WS] Close for %s ignored: %s", self.id, e)
