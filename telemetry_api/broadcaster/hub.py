"""Push broadcaster: connection registry, subscription rooms, heartbeat.

Frames are JSON objects ``{"event": name, "data": payload}`` in both
directions. Rooms:
    sensor:{sensorId}   readings and status for one sensor
    weather             weather updates
    all-updates         everything broadcast to any room
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional, Set

import orjson

from ..domain.reading import isoformat, utcnow
from ..domain.topics import ROOM_ALL, ROOM_WEATHER, sensor_room
from ..metrics import BROADCAST_DELIVERIES, WS_CONNECTED_CLIENTS
from .connection import Connection, Transport

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = "Connected to CSIR IoT WebSocket Server"


def encode_frame(event: str, data: Any) -> str:
    return orjson.dumps({"event": event, "data": data}).decode()


def _now_iso() -> str:
    return isoformat(utcnow())


class Broadcaster:
    """Best-effort fan-out to live connections.

    Every operation except the heartbeat loop is synchronous: sends only
    enqueue onto per-connection queues, so a slow client never blocks a
    broadcast and a failing transport only drops its own connection.
    """

    def __init__(
        self,
        heartbeat_interval: float = 25.0,
        outbound_queue_size: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.heartbeat_interval = heartbeat_interval
        self._outbound_queue_size = outbound_queue_size
        self._clock = clock
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None
        self.total_connections = 0
        self.send_failures = 0

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def register(self, transport: Transport) -> Connection:
        connection = Connection(
            uuid.uuid4().hex,
            transport,
            max_queue=self._outbound_queue_size,
            clock=self._clock,
        )
        self._connections[connection.id] = connection
        connection.start(on_failure=self._on_send_failure)
        self.total_connections += 1
        WS_CONNECTED_CLIENTS.set(len(self._connections))
        logger.info("[WS] Client connected: %s (total=%d)", connection.id, len(self._connections))

        self.direct_send(
            connection.id,
            "connected",
            {"connectionId": connection.id, "serverTime": _now_iso(), "message": WELCOME_MESSAGE},
        )
        return connection

    def unregister(self, connection_id: str) -> bool:
        """Drop a connection and its subscriptions immediately."""
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False
        for room in list(connection.rooms):
            self._leave(connection_id, room)
        connection.close()
        WS_CONNECTED_CLIENTS.set(len(self._connections))
        logger.info("[WS] Client disconnected: %s (total=%d)", connection_id, len(self._connections))
        return True

    def _on_send_failure(self, connection_id: str) -> None:
        self.send_failures += 1
        self.unregister(connection_id)

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    def subscribe(self, connection_id: str, room: str) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        connection.rooms.add(room)
        self._rooms.setdefault(room, set()).add(connection_id)
        logger.debug("[WS] %s joined %s", connection_id, room)
        return True

    def unsubscribe(self, connection_id: str, room: str) -> bool:
        connection = self._connections.get(connection_id)
        if connection is None or room not in connection.rooms:
            return False
        self._leave(connection_id, room)
        logger.debug("[WS] %s left %s", connection_id, room)
        return True

    def _leave(self, connection_id: str, room: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.rooms.discard(room)
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[room]

    def room_members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def broadcast(self, room: str, event: str, data: Any) -> int:
        """Send to ``room`` subscribers plus ``all-updates``, each connection once."""
        targets = self.room_members(room) | self.room_members(ROOM_ALL)
        return self._deliver(targets, event, data)

    def room_send(self, room: str, event: str, data: Any) -> int:
        """Send to ``room`` subscribers only."""
        return self._deliver(self.room_members(room), event, data)

    def direct_send(self, connection_id: str, event: str, data: Any) -> bool:
        return self._deliver({connection_id}, event, data) == 1

    def send_all(self, event: str, data: Any) -> int:
        return self._deliver(set(self._connections), event, data)

    def _deliver(self, connection_ids: Set[str], event: str, data: Any) -> int:
        if not connection_ids:
            return 0
        frame = encode_frame(event, data)
        delivered = 0
        for connection_id in connection_ids:
            connection = self._connections.get(connection_id)
            if connection is not None and connection.enqueue(frame):
                delivered += 1
        if delivered:
            BROADCAST_DELIVERIES.labels(event=event).inc(delivered)
        logger.debug("[WS] %s -> %d connections", event, delivered)
        return delivered

    # ------------------------------------------------------------------
    # Client frames
    # ------------------------------------------------------------------

    def handle_client_frame(self, connection_id: str, text: str) -> None:
        if connection_id not in self._connections:
            return

        try:
            frame = orjson.loads(text)
        except orjson.JSONDecodeError:
            self.direct_send(connection_id, "error", {"message": "Frame is not valid JSON"})
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            self.direct_send(connection_id, "error", {"message": "Frame must be an object with an 'event' field"})
            return

        event = frame["event"]
        data = frame.get("data")

        if event == "subscribe:sensor":
            sensor_id = self._sensor_id_from(data)
            if sensor_id is None:
                self.direct_send(connection_id, "error", {"message": "subscribe:sensor requires a sensorId"})
                return
            self.subscribe(connection_id, sensor_room(sensor_id))
            self.direct_send(connection_id, "subscribed", {"sensorId": sensor_id, "timestamp": _now_iso()})
        elif event == "unsubscribe:sensor":
            sensor_id = self._sensor_id_from(data)
            if sensor_id is not None:
                self.unsubscribe(connection_id, sensor_room(sensor_id))
        elif event == "subscribe:weather":
            self.subscribe(connection_id, ROOM_WEATHER)
            self.direct_send(connection_id, "subscribed", {"room": ROOM_WEATHER, "timestamp": _now_iso()})
        elif event == "subscribe:all":
            self.subscribe(connection_id, ROOM_ALL)
            self.direct_send(connection_id, "subscribed", {"room": ROOM_ALL, "timestamp": _now_iso()})
        elif event == "ping":
            self.direct_send(connection_id, "pong", {"timestamp": _now_iso()})
        else:
            self.direct_send(connection_id, "error", {"message": f"Unknown event: {event}"})

    @staticmethod
    def _sensor_id_from(data: Any) -> Optional[str]:
        if isinstance(data, dict):
            data = data.get("sensorId")
        if isinstance(data, str) and data.strip():
            return data.strip()
        return None

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def heartbeat_once(self) -> int:
        """Send a keep-alive frame to every connection.

        Liveness is not judged here. Dead peers surface as a failed send or
        as the server's transport-level ping timeout closing the socket.
        """
        return self.send_all("heartbeat", {"timestamp": _now_iso()})

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.heartbeat_once()

    def start(self) -> None:
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="ws-heartbeat")

    async def stop(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for connection_id in list(self._connections):
            self.unregister(connection_id)

    def stats(self) -> dict:
        return {
            "connected": len(self._connections),
            "total_connections": self.total_connections,
            "send_failures": self.send_failures,
            "rooms": {room: len(members) for room, members in self._rooms.items()},
        }
