"""Telemetry generator publishing simulated sensors on the bus.

Publishes, per tick, one reading per profile on ``{root}/sensors/{id}/data``;
a weather sample on ``{root}/weather/update`` every ``weather_interval``;
``online``/``offline`` presence on ``{root}/system/status``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from typing import Callable, Optional, Sequence

from ..bus.client import Publisher
from ..domain.reading import isoformat, utcnow
from ..domain.topics import TopicScheme
from .profiles import SENSOR_PROFILES, SensorProfile, generate_sensor_data, generate_weather

logger = logging.getLogger(__name__)

SIMULATOR_NAME = "csir-iot-simulator"
WEATHER_INTERVAL_SECONDS = 30.0


class TelemetrySimulator:
    def __init__(
        self,
        publisher: Publisher,
        topics: TopicScheme,
        profiles: Sequence[SensorProfile] = tuple(SENSOR_PROFILES),
        interval: float = 5.0,
        weather_interval: float = WEATHER_INTERVAL_SECONDS,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._publisher = publisher
        self._topics = topics
        self.profiles = list(profiles)
        self.interval = interval
        self.weather_interval = weather_interval
        self._rng = rng or random.Random()
        self._clock = clock
        self._last_weather: Optional[float] = None
        self.published = 0

    def publish_sensor_data(self, profile: SensorProfile) -> bool:
        data = generate_sensor_data(profile, rng=self._rng)
        message = {
            "sensorId": profile.sensor_id,
            "name": profile.name,
            "type": profile.type.value,
            "location": dict(profile.location),
            "timestamp": isoformat(utcnow()),
            "data": data,
            "messageId": str(uuid.uuid4()),
        }
        ok = self._publisher.publish(self._topics.sensor_data_topic(profile.sensor_id), message)
        if ok:
            self.published += 1
            logger.info("[SIM] Published %s temp=%s", profile.name, _fmt(data.get("temperature")))
        return ok

    def publish_weather(self) -> bool:
        ok = self._publisher.publish(self._topics.weather_update, generate_weather(rng=self._rng))
        if ok:
            logger.info("[SIM] Weather update published")
        return ok

    def publish_status(self, status: str) -> bool:
        message = {"status": status, "simulator": SIMULATOR_NAME, "timestamp": isoformat(utcnow())}
        if status == "online":
            message["sensors"] = [p.sensor_id for p in self.profiles]
        return self._publisher.publish(self._topics.system_status, message)

    def tick(self) -> None:
        """One simulation step: every profile, plus weather when due."""
        for profile in self.profiles:
            self.publish_sensor_data(profile)
        now = self._clock()
        if self._last_weather is None or now - self._last_weather >= self.weather_interval:
            self.publish_weather()
            self._last_weather = now

    async def run(self, stop: asyncio.Event, max_ticks: Optional[int] = None) -> None:
        self.publish_status("online")
        logger.info(
            "[SIM] Simulating %d sensors every %.1fs: %s",
            len(self.profiles), self.interval, ", ".join(p.sensor_id for p in self.profiles),
        )
        ticks = 0
        try:
            while not stop.is_set():
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(stop.wait(), self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.publish_status("offline")
            logger.info("[SIM] Stopped after %d ticks (%d readings)", ticks, self.published)


def _fmt(value: Optional[float]) -> str:
    return f"{value:.1f}°C" if value is not None else "n/a"
