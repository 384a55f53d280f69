"""Simulated sensor profiles and the telemetry simulator."""

import asyncio
import random
from datetime import datetime, timezone

import pytest

from telemetry_api.domain.topics import TopicScheme
from telemetry_api.generator import (
    SENSOR_PROFILES,
    TelemetrySimulator,
    generate_sensor_data,
    generate_weather,
    random_reading_data,
)
from telemetry_api.ingestion.normalizer import normalize_reading, normalize_weather

from conftest import FakeClock, FakePublisher

NOON = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
MIDNIGHT = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)


class TestProfiles:
    def test_ids_unique(self):
        ids = [p.sensor_id for p in SENSOR_PROFILES]
        assert len(ids) == len(set(ids))

    def test_only_profiled_fields_generated(self):
        lab = next(p for p in SENSOR_PROFILES if p.sensor_id == "SENSOR-PRETORIA-002")
        data = generate_sensor_data(lab, now=NOON, rng=random.Random(1))
        assert set(data) == {"temperature", "humidity", "battery", "signal_strength"}

    def test_values_stay_in_range(self):
        rng = random.Random(7)
        for profile in SENSOR_PROFILES:
            for now in (NOON, MIDNIGHT):
                data = generate_sensor_data(profile, now=now, rng=rng)
                assert 20.0 <= data["humidity"] <= 95.0
                assert 85 <= data["battery"] <= 100
                assert -80 <= data["signal_strength"] <= -50
                if "winddirection" in data:
                    assert 0 <= data["winddirection"] < 360

    def test_warmer_at_noon(self):
        main = SENSOR_PROFILES[0]
        noon = generate_sensor_data(main, now=NOON, rng=random.Random(3))
        night = generate_sensor_data(main, now=MIDNIGHT, rng=random.Random(3))
        assert noon["temperature"] > night["temperature"]

    def test_registration_body(self):
        body = SENSOR_PROFILES[0].registration()
        assert body["type"] == "combined"
        assert set(body) == {"sensorId", "name", "type", "location"}

    def test_generated_messages_normalize(self):
        weather = normalize_weather("csir/weather/update", generate_weather(now=NOON, rng=random.Random(2)))
        assert weather.is_day == 1
        reading = normalize_reading("csir/sensors/S-1/data", {"data": random_reading_data(random.Random(2))}, "S-1")
        assert set(reading.data) == {"temperature", "humidity", "pressure", "windspeed", "winddirection"}


class TestSimulator:
    def _simulator(self, publisher, clock=None, **kwargs):
        return TelemetrySimulator(
            publisher,
            TopicScheme("csir"),
            rng=random.Random(0),
            clock=clock or FakeClock(),
            **kwargs,
        )

    def test_tick_publishes_every_profile_and_weather(self):
        publisher = FakePublisher()
        sim = self._simulator(publisher)

        sim.tick()

        topics = [t for t, _ in publisher.published]
        assert topics[:-1] == [f"csir/sensors/{p.sensor_id}/data" for p in SENSOR_PROFILES]
        assert topics[-1] == "csir/weather/update"
        _, first = publisher.published[0]
        assert first["sensorId"] == SENSOR_PROFILES[0].sensor_id
        assert "messageId" in first

    def test_weather_only_when_due(self):
        publisher = FakePublisher()
        clock = FakeClock()
        sim = self._simulator(publisher, clock=clock, weather_interval=30)

        sim.tick()
        clock.advance(10)
        sim.tick()
        clock.advance(25)
        sim.tick()

        weather = [t for t, _ in publisher.published if t == "csir/weather/update"]
        assert len(weather) == 2

    def test_failed_publish_not_counted(self):
        sim = self._simulator(FakePublisher(ok=False))
        sim.tick()
        assert sim.published == 0

    @pytest.mark.asyncio
    async def test_run_announces_presence(self):
        publisher = FakePublisher()
        sim = self._simulator(publisher, interval=0.01)

        await sim.run(asyncio.Event(), max_ticks=2)

        statuses = [p for t, p in publisher.published if t == "csir/system/status"]
        assert [s["status"] for s in statuses] == ["online", "offline"]
        assert statuses[0]["sensors"] == [p.sensor_id for p in SENSOR_PROFILES]
        assert sim.published == 2 * len(SENSOR_PROFILES)

    @pytest.mark.asyncio
    async def test_stop_event_ends_run(self):
        publisher = FakePublisher()
        sim = self._simulator(publisher, interval=60)
        stop = asyncio.Event()

        task = asyncio.create_task(sim.run(stop))
        await asyncio.sleep(0)
        stop.set()
        await asyncio.wait_for(task, 1.0)

        assert publisher.published[-1][1]["status"] == "offline"
