"""Shared fixtures: in-memory store, fake transports, fake bus publisher."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

import orjson
import pytest

from common.config import get_settings
from telemetry_api.broadcaster.hub import Broadcaster
from telemetry_api.domain.reading import ReadingEvent
from telemetry_api.domain.sensor import Sensor
from telemetry_api.domain.topics import TopicScheme
from telemetry_api.persistence.gateway import PersistenceGateway

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Records frames sent to a client; ``fail=True`` makes every send raise."""

    def __init__(self, fail: bool = False):
        self.frames: List[Dict[str, Any]] = []
        self.closed = False
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.frames.append(orjson.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def events(self) -> List[str]:
        return [f["event"] for f in self.frames]

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [f["data"] for f in self.frames if f["event"] == event]


class FakePublisher:
    def __init__(self, ok: bool = True):
        self.published: List[Tuple[str, Any]] = []
        self.ok = ok

    def publish(self, topic, payload, qos=1, retain=False) -> bool:
        self.published.append((topic, payload))
        return self.ok


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def drain(rounds: int = 5) -> None:
    """Let sender tasks and scheduled callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_sensor(sensor_id: str = "SENSOR-PRETORIA-001", **overrides) -> Sensor:
    values = dict(
        sensor_id=sensor_id,
        name=f"Sensor {sensor_id}",
        type="combined",
        location={"latitude": -25.75, "longitude": 28.19, "name": "Pretoria", "altitude": 0.0},
    )
    values.update(overrides)
    return Sensor(**values)


def make_event(sensor_id: str, at: datetime, **data) -> ReadingEvent:
    return ReadingEvent(sensor_id=sensor_id, timestamp=at, data=data or {"temperature": 21.0})


@pytest.fixture
def settings():
    return dataclasses.replace(
        get_settings(),
        database_url="sqlite://",
        mqtt_enabled=False,
        mqtt_topic_root="csir",
        weather_poll_interval_seconds=0.0,
        orphan_reading_policy="keep",
        admin_api_key="test-admin-key",
        environment="test",
        pagination_max_limit=100,
        ws_heartbeat_interval=25.0,
        ws_heartbeat_timeout=60.0,
    )


@pytest.fixture
def gateway():
    gw = PersistenceGateway.from_url("sqlite://")
    gw.create_schema()
    yield gw
    gw.dispose()


@pytest.fixture
def broadcaster():
    return Broadcaster(heartbeat_interval=25.0, outbound_queue_size=16)


@pytest.fixture
def topics():
    return TopicScheme("csir")


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def sensor(gateway):
    return gateway.create_sensor(make_sensor())


@pytest.fixture
def recent():
    """A timestamp an hour ago, inside every default query window."""
    return datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=1)
