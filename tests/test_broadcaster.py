"""Push broadcaster: rooms, client frames, heartbeat and failure isolation."""

import orjson
import pytest

from telemetry_api.broadcaster.connection import ConnectionState
from telemetry_api.broadcaster.hub import Broadcaster
from telemetry_api.domain.topics import ROOM_ALL, ROOM_WEATHER, sensor_room

from conftest import FakeClock, FakeTransport, drain


def _frame(event, data=None) -> str:
    return orjson.dumps({"event": event, "data": data}).decode()


# =============================================================================
# Connection lifecycle
# =============================================================================

class TestConnectionLifecycle:
    @pytest.mark.asyncio
    async def test_welcome_frame_carries_connection_id(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        await drain()

        (welcome,) = transport.of("connected")
        assert welcome["connectionId"] == connection.id
        assert "serverTime" in welcome
        assert broadcaster.connection_count == 1

    @pytest.mark.asyncio
    async def test_unregister_discards_subscriptions_immediately(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        broadcaster.subscribe(connection.id, sensor_room("S1"))

        assert broadcaster.unregister(connection.id) is True
        assert broadcaster.room_members(sensor_room("S1")) == set()
        assert connection.state == ConnectionState.DISCONNECTED
        await drain()
        assert transport.closed
        assert broadcaster.unregister(connection.id) is False


# =============================================================================
# Rooms and delivery
# =============================================================================

class TestDelivery:
    @pytest.mark.asyncio
    async def test_broadcast_reaches_room_and_all_updates(self, broadcaster):
        sensor_fan, all_fan, weather_fan = FakeTransport(), FakeTransport(), FakeTransport()
        a = broadcaster.register(sensor_fan)
        b = broadcaster.register(all_fan)
        c = broadcaster.register(weather_fan)
        broadcaster.subscribe(a.id, sensor_room("S1"))
        broadcaster.subscribe(b.id, ROOM_ALL)
        broadcaster.subscribe(c.id, ROOM_WEATHER)

        delivered = broadcaster.broadcast(sensor_room("S1"), "iot:reading", {"sensorId": "S1"})
        await drain()

        assert delivered == 2
        assert sensor_fan.of("iot:reading") == [{"sensorId": "S1"}]
        assert all_fan.of("iot:reading") == [{"sensorId": "S1"}]
        assert weather_fan.of("iot:reading") == []

    @pytest.mark.asyncio
    async def test_connection_in_both_rooms_gets_one_copy(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        broadcaster.subscribe(connection.id, sensor_room("S1"))
        broadcaster.subscribe(connection.id, ROOM_ALL)

        broadcaster.broadcast(sensor_room("S1"), "iot:reading", {"n": 1})
        await drain()

        assert len(transport.of("iot:reading")) == 1

    @pytest.mark.asyncio
    async def test_room_send_skips_all_updates(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        broadcaster.subscribe(connection.id, ROOM_ALL)

        assert broadcaster.room_send(ROOM_WEATHER, "weather:update", {}) == 0

    @pytest.mark.asyncio
    async def test_order_preserved_per_connection(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        broadcaster.subscribe(connection.id, ROOM_ALL)

        for i in range(10):
            broadcaster.broadcast(sensor_room("S1"), "iot:reading", {"n": i})
        await drain(20)

        assert [d["n"] for d in transport.of("iot:reading")] == list(range(10))

    @pytest.mark.asyncio
    async def test_failing_transport_is_isolated(self, broadcaster):
        bad, good = FakeTransport(fail=True), FakeTransport()
        bad_conn = broadcaster.register(bad)
        good_conn = broadcaster.register(good)
        for conn in (bad_conn, good_conn):
            broadcaster.subscribe(conn.id, ROOM_ALL)
        await drain()

        broadcaster.broadcast(ROOM_WEATHER, "weather:update", {"temperature": 20})
        await drain()

        assert broadcaster.get(bad_conn.id) is None
        assert good.of("weather:update") == [{"temperature": 20}]
        assert broadcaster.connection_count == 1

        # New connections are still accepted.
        broadcaster.register(FakeTransport())
        assert broadcaster.connection_count == 2

    @pytest.mark.asyncio
    async def test_slow_client_drops_oldest_frames(self):
        broadcaster = Broadcaster(outbound_queue_size=2)
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        broadcaster.subscribe(connection.id, ROOM_ALL)

        # Nothing has been drained yet: the welcome frame plus three readings compete for two slots.
        for i in range(3):
            broadcaster.broadcast(sensor_room("S1"), "iot:reading", {"n": i})
        await drain()

        assert connection.dropped == 2
        assert [d["n"] for d in transport.of("iot:reading")] == [1, 2]


# =============================================================================
# Client frames
# =============================================================================

class TestClientFrames:
    @pytest.mark.asyncio
    async def test_subscribe_sensor_accepts_string_or_object(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)

        broadcaster.handle_client_frame(connection.id, _frame("subscribe:sensor", "S1"))
        broadcaster.handle_client_frame(connection.id, _frame("subscribe:sensor", {"sensorId": "S2"}))
        await drain()

        assert connection.rooms == {sensor_room("S1"), sensor_room("S2")}
        assert [d["sensorId"] for d in transport.of("subscribed")] == ["S1", "S2"]

    @pytest.mark.asyncio
    async def test_subscriptions_are_additive_and_independent(self, broadcaster):
        connection = broadcaster.register(FakeTransport())

        for event in ("subscribe:weather", "subscribe:all"):
            broadcaster.handle_client_frame(connection.id, _frame(event))
        broadcaster.handle_client_frame(connection.id, _frame("subscribe:sensor", "S1"))
        broadcaster.handle_client_frame(connection.id, _frame("unsubscribe:sensor", "S1"))

        assert connection.rooms == {ROOM_WEATHER, ROOM_ALL}

    @pytest.mark.asyncio
    async def test_ping_gets_pong(self, broadcaster):
        transport = FakeTransport()
        connection = broadcaster.register(transport)

        broadcaster.handle_client_frame(connection.id, _frame("ping"))
        await drain()

        (pong,) = transport.of("pong")
        assert "timestamp" in pong

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text",
        ["{not json", '"just a string"', _frame("dance"), _frame("subscribe:sensor", {"id": 1})],
    )
    async def test_bad_frames_get_error(self, broadcaster, text):
        transport = FakeTransport()
        connection = broadcaster.register(transport)

        broadcaster.handle_client_frame(connection.id, text)
        await drain()

        assert len(transport.of("error")) == 1
        assert broadcaster.connection_count == 1


# =============================================================================
# Heartbeat
# =============================================================================

class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_listening_subscriber_survives_heartbeats(self):
        clock = FakeClock()
        broadcaster = Broadcaster(heartbeat_interval=25.0, clock=clock)
        transport = FakeTransport()
        connection = broadcaster.register(transport)
        broadcaster.handle_client_frame(connection.id, _frame("subscribe:sensor", "X"))

        for _ in range(3):
            clock.advance(25.0)
            assert broadcaster.heartbeat_once() == 1

        delivered = broadcaster.broadcast(sensor_room("X"), "iot:reading", {"sensorId": "X"})
        await drain()

        assert delivered == 1
        assert broadcaster.connection_count == 1
        assert not transport.closed
        assert len(transport.of("heartbeat")) == 3
        assert transport.of("iot:reading") == [{"sensorId": "X"}]

    @pytest.mark.asyncio
    async def test_dead_peer_dropped_when_heartbeat_send_fails(self, broadcaster):
        alive, dead = FakeTransport(), FakeTransport()
        broadcaster.register(alive)
        dead_conn = broadcaster.register(dead)
        broadcaster.subscribe(dead_conn.id, ROOM_ALL)
        await drain()

        dead.fail = True
        broadcaster.heartbeat_once()
        await drain()

        assert broadcaster.get(dead_conn.id) is None
        assert broadcaster.room_members(ROOM_ALL) == set()
        assert dead.closed
        assert broadcaster.connection_count == 1
        assert len(alive.of("heartbeat")) == 1
        assert broadcaster.stats()["send_failures"] == 1

    @pytest.mark.asyncio
    async def test_stop_closes_everything(self, broadcaster):
        transports = [FakeTransport() for _ in range(3)]
        for t in transports:
            broadcaster.register(t)
        broadcaster.start()

        await broadcaster.stop()
        await drain()

        assert broadcaster.connection_count == 0
        assert all(t.closed for t in transports)
