"""Service container: owns every long-lived component and its lifecycle.

    TelemetryServices
      gateway       PersistenceGateway (SQLAlchemy)
      broadcaster   Broadcaster (WebSocket rooms + heartbeat task)
      channel       InboundChannel  <- BusClient (paho thread)
      dispatcher    BusDispatcher   -> IngestionService handlers
      weather       WeatherService  (optional poller task)

Nothing here is a module-level singleton; the FastAPI lifespan builds one
container, calls ``start()`` and ``shutdown()``, and hangs it on
``app.state.services``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Optional

import httpx

from common.config import Settings
from common.db import wait_for_database

from .broadcaster.hub import Broadcaster
from .bus.channel import InboundChannel
from .bus.client import BusClient, BusConfig
from .bus.dispatcher import BusDispatcher
from .bus.stats import BusStats
from .domain.topics import TopicScheme
from .errors import BusConnectionError, StorageError, SubscriptionError
from .ingestion.service import IngestionService, OrphanPolicy
from .persistence.gateway import PersistenceGateway
from .resilience import BreakerConfig, CircuitBreaker
from .weather.client import OpenMeteoClient
from .weather.service import WeatherService

logger = logging.getLogger(__name__)

ORPHAN_PURGE_INTERVAL_SECONDS = 3600.0


class TelemetryServices:
    def __init__(
        self,
        settings: Settings,
        gateway: Optional[PersistenceGateway] = None,
        bus: Optional[BusClient] = None,
        weather_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.gateway = gateway or PersistenceGateway.from_url(settings.database_url)
        self.topics = TopicScheme(settings.mqtt_topic_root)

        self.broadcaster = Broadcaster(
            heartbeat_interval=settings.ws_heartbeat_interval,
            outbound_queue_size=settings.ws_outbound_queue_size,
        )

        self.bus_stats = BusStats()
        self.channel = InboundChannel(settings.mqtt_inbound_queue_size)
        if bus is None and settings.mqtt_enabled:
            bus = BusClient(BusConfig.from_settings(settings), self.channel, self.bus_stats)
        self.bus = bus
        self.dispatcher = BusDispatcher(self.channel, self.bus_stats)

        self.ingestion = IngestionService(
            self.gateway,
            self.broadcaster,
            self.topics,
            publisher=self.bus,
            origin=self.bus.client_id if self.bus is not None else None,
            orphan_policy=OrphanPolicy(settings.orphan_reading_policy),
            orphan_ttl=timedelta(hours=settings.orphan_reading_ttl_hours),
            breaker=CircuitBreaker("readings-store", BreakerConfig.from_env()),
        )
        self.ingestion.register_routes(self.dispatcher)

        self.weather = WeatherService(
            OpenMeteoClient(
                settings.weather_api_url,
                timeout=settings.weather_timeout_seconds,
                transport=weather_transport,
            ),
            self.gateway,
            self.broadcaster,
            default_latitude=settings.weather_default_latitude,
            default_longitude=settings.weather_default_longitude,
            poll_interval=settings.weather_poll_interval_seconds,
        )

        self.started_monotonic = time.monotonic()
        self._purge_task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def bus_connected(self) -> bool:
        return self.bus is not None and self.bus.is_connected

    async def start(self) -> None:
        if self._started:
            return
        if not self.settings.database_url.startswith("sqlite"):
            await asyncio.to_thread(wait_for_database, self.gateway.engine, self.settings.db_connect_retries)
        await asyncio.to_thread(self.gateway.create_schema)

        self.broadcaster.start()
        self.dispatcher.start()
        await self._start_bus()
        self.weather.start()
        if self.ingestion.orphan_policy == OrphanPolicy.EXPIRE:
            self._purge_task = asyncio.create_task(self._purge_loop(), name="orphan-purge")

        self.started_monotonic = time.monotonic()
        self._started = True
        logger.info(
            "Telemetry services started mqtt=%s orphan_policy=%s",
            "on" if self.bus is not None else "off",
            self.ingestion.orphan_policy.value,
        )

    async def _start_bus(self) -> None:
        if self.bus is None:
            logger.info("[MQTT] Bus disabled (MQTT_ENABLED=false)")
            return
        try:
            await self.bus.connect()
            await self.bus.subscribe(self.dispatcher.patterns)
        except (BusConnectionError, SubscriptionError) as e:
            # The REST API and WebSocket stay up; paho keeps reconnecting.
            logger.error("[MQTT] %s", e.message)

    async def _purge_loop(self) -> None:
        while True:
            try:
                purged = await self.ingestion.purge_expired_orphans()
                if purged:
                    logger.info("[INGEST] Purged %d expired orphan readings", purged)
            except StorageError as e:
                logger.error("[INGEST] Orphan purge failed: %s", e.message)
            await asyncio.sleep(ORPHAN_PURGE_INTERVAL_SECONDS)

    async def shutdown(self) -> None:
        if self._purge_task is not None:
            self._purge_task.cancel()
            try:
                await self._purge_task
            except asyncio.CancelledError:
                pass
            self._purge_task = None
        await self.weather.stop()
        if self.bus is not None:
            await self.bus.disconnect()
        await self.dispatcher.stop()
        await self.broadcaster.stop()
        await asyncio.to_thread(self.gateway.dispose)
        self._started = False
        logger.info("Telemetry services stopped. %s", self.bus_stats)

    def stats(self) -> dict:
        return {
            "bus": {
                **self.bus_stats.to_dict(),
                "connected": self.bus_connected,
                "inbound_queued": len(self.channel),
                "inbound_dropped": self.channel.dropped,
            },
            "ingestion": self.ingestion.stats.to_dict(),
            "store_breaker": self.ingestion.breaker.to_dict(),
            "broadcaster": self.broadcaster.stats(),
            "weather": self.weather.stats(),
        }
