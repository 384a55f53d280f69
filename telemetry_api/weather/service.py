from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..broadcaster.hub import Broadcaster
from ..domain.topics import ROOM_WEATHER
from ..domain.weather import WeatherSample
from ..errors import StorageError, TelemetryError
from ..persistence.gateway import PersistenceGateway
from .client import OpenMeteoClient

logger = logging.getLogger(__name__)


class WeatherService:
    """Fetch from Open-Meteo, store the sample, push it to the weather room."""

    def __init__(
        self,
        client: OpenMeteoClient,
        gateway: PersistenceGateway,
        broadcaster: Broadcaster,
        default_latitude: float = -25.75,
        default_longitude: float = 28.19,
        poll_interval: float = 0.0,
    ):
        self.client = client
        self._gateway = gateway
        self._broadcaster = broadcaster
        self.default_latitude = default_latitude
        self.default_longitude = default_longitude
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self.fetched = 0
        self.failed = 0

    async def fetch_current(
        self,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> WeatherSample:
        """Raises UpstreamTimeoutError / UpstreamError; a store failure is only logged."""
        lat = self.default_latitude if latitude is None else latitude
        lon = self.default_longitude if longitude is None else longitude
        try:
            sample = await self.client.fetch_current(lat, lon)
        except TelemetryError:
            self.failed += 1
            raise
        self.fetched += 1

        try:
            sample = await asyncio.to_thread(self._gateway.insert_weather_sample, sample)
        except StorageError as e:
            logger.error("[WEATHER] Sample not persisted: %s", e.message)

        try:
            self._broadcaster.broadcast(ROOM_WEATHER, "weather:update", sample.to_payload())
        except Exception:
            logger.exception("[WEATHER] Broadcast failed")
        return sample

    # ------------------------------------------------------------------
    # Poller
    # ------------------------------------------------------------------

    def start(self) -> Optional[asyncio.Task]:
        if self.poll_interval <= 0 or self._task is not None:
            return self._task
        self._task = asyncio.create_task(self._poll(), name="weather-poller")
        logger.info("[WEATHER] Polling every %.0fs", self.poll_interval)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _poll(self) -> None:
        while True:
            try:
                await self.fetch_current()
            except TelemetryError as e:
                logger.warning("[WEATHER] Poll failed: %s", e.message)
            await asyncio.sleep(self.poll_interval)

    def stats(self) -> dict:
        return {
            "fetched": self.fetched,
            "failed": self.failed,
            "polling": self._task is not None,
            "poll_interval": self.poll_interval,
        }
