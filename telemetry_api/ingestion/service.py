"""Ingestion handlers for bus messages and REST submissions.

Bus path (trusted producers, failures contained):
    topic + payload -> normalize -> { persist (breaker-guarded), broadcast }

REST path (arbitrary callers, failures raised):
    sensor must exist and be active -> persist -> touch -> broadcast -> re-publish
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from ..broadcaster.hub import Broadcaster
from ..bus.client import Publisher
from ..domain.reading import ReadingEvent, ReadingQuality, is_numeric, isoformat, utcnow
from ..domain.sensor import Sensor, StoredReading
from ..domain.topics import ROOM_WEATHER, TopicClass, TopicScheme, sensor_room
from ..errors import NotFoundError, ParseError, StorageError, ValidationError
from ..generator.profiles import random_reading_data
from ..metrics import BUS_MESSAGES_FAILED, READINGS_PERSISTED
from ..persistence.gateway import PersistenceGateway
from ..resilience import CircuitBreaker, CircuitOpenError
from .anomaly import AnomalyPolicy, never_anomalous
from .normalizer import decode_object, normalize_reading, normalize_status, normalize_weather

logger = logging.getLogger(__name__)


class OrphanPolicy(str, Enum):
    """What happens to bus readings for unregistered sensors."""

    KEEP = "keep"      # persist and keep indefinitely
    DROP = "drop"      # broadcast only
    EXPIRE = "expire"  # persist, purge after the configured TTL


@dataclass
class IngestionStats:
    readings: int = 0
    statuses: int = 0
    weather: int = 0
    system: int = 0
    parse_errors: int = 0
    storage_errors: int = 0
    persist_skipped: int = 0
    orphans: int = 0
    echoes_ignored: int = 0
    orphans_purged: int = 0
    last_reading_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "readings": self.readings,
            "statuses": self.statuses,
            "weather": self.weather,
            "system": self.system,
            "parse_errors": self.parse_errors,
            "storage_errors": self.storage_errors,
            "persist_skipped": self.persist_skipped,
            "orphans": self.orphans,
            "echoes_ignored": self.echoes_ignored,
            "orphans_purged": self.orphans_purged,
            "last_reading_at": isoformat(self.last_reading_at),
        }


class IngestionService:
    def __init__(
        self,
        gateway: PersistenceGateway,
        broadcaster: Broadcaster,
        topics: TopicScheme,
        publisher: Optional[Publisher] = None,
        origin: Optional[str] = None,
        orphan_policy: OrphanPolicy = OrphanPolicy.KEEP,
        orphan_ttl: timedelta = timedelta(hours=720),
        anomaly_policy: AnomalyPolicy = never_anomalous,
        breaker: Optional[CircuitBreaker] = None,
        rng: Optional[random.Random] = None,
    ):
        self._gateway = gateway
        self._broadcaster = broadcaster
        self._topics = topics
        self._publisher = publisher
        self._origin = origin
        self.orphan_policy = orphan_policy
        self.orphan_ttl = orphan_ttl
        self._anomaly_policy = anomaly_policy
        self._breaker = breaker or CircuitBreaker("readings-store")
        self._rng = rng or random.Random()
        self.stats = IngestionStats()

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def register_routes(self, dispatcher) -> None:
        dispatcher.route(self._topics.sensor_data, self.handle_sensor_data, TopicClass.SENSOR_DATA.value)
        dispatcher.route(self._topics.sensor_status, self.handle_sensor_status, TopicClass.SENSOR_STATUS.value)
        dispatcher.route(self._topics.weather_update, self.handle_weather_update, TopicClass.WEATHER_UPDATE.value)
        dispatcher.route(self._topics.system_alerts, self.handle_system_message, TopicClass.SYSTEM_ALERTS.value)
        dispatcher.route(self._topics.system_status, self.handle_system_message, TopicClass.SYSTEM_STATUS.value)

    # ------------------------------------------------------------------
    # Bus handlers
    # ------------------------------------------------------------------
    # Each returns False when the message is dropped as malformed.

    async def handle_sensor_data(self, topic: str, payload: bytes) -> bool:
        sensor_id = self._topics.sensor_id_from_topic(topic)
        if sensor_id is None:
            self._parse_failed(TopicClass.SENSOR_DATA, topic, "no sensor id in topic")
            return False
        try:
            body = decode_object(payload, topic)
            if self._is_echo(body):
                self.stats.echoes_ignored += 1
                return True
            event = normalize_reading(topic, body, sensor_id)
        except ParseError as e:
            self._parse_failed(TopicClass.SENSOR_DATA, topic, e.message)
            return False

        event.is_anomaly = self._is_anomaly(sensor_id, event.data)
        sensor = await self._lookup_sensor(sensor_id)
        if sensor is not None:
            event.sensor_summary = sensor.summary
        else:
            self.stats.orphans += 1
            logger.debug("[INGEST] Orphan reading sensor_id=%s policy=%s", sensor_id, self.orphan_policy.value)

        self.stats.readings += 1
        self.stats.last_reading_at = event.received_at
        persist = sensor is not None or self.orphan_policy != OrphanPolicy.DROP

        tasks = [self._broadcast_reading(event)]
        if persist:
            tasks.append(self._persist_from_bus(event, touch=sensor is not None))
        await asyncio.gather(*tasks)
        return True

    async def handle_sensor_status(self, topic: str, payload: bytes) -> bool:
        sensor_id = self._topics.sensor_id_from_topic(topic)
        if sensor_id is None:
            self._parse_failed(TopicClass.SENSOR_STATUS, topic, "no sensor id in topic")
            return False
        try:
            status = normalize_status(topic, payload)
        except ParseError as e:
            self._parse_failed(TopicClass.SENSOR_STATUS, topic, e.message)
            return False
        if self._is_echo(status):
            self.stats.echoes_ignored += 1
            return True

        self.stats.statuses += 1
        try:
            registered = await asyncio.to_thread(self._gateway.record_sensor_status, sensor_id, status)
        except StorageError as e:
            registered = False
            self.stats.storage_errors += 1
            logger.error("[INGEST] Could not record status for %s: %s", sensor_id, e.message)

        logger.info("[INGEST] Sensor %s status: %s", sensor_id, status.get("status", status))
        self._safe_broadcast(
            sensor_room(sensor_id),
            "sensor:status",
            {
                "sensorId": sensor_id,
                "status": status,
                "registered": registered,
                "timestamp": isoformat(utcnow()),
            },
        )
        return True

    async def handle_weather_update(self, topic: str, payload: bytes) -> bool:
        try:
            sample = normalize_weather(topic, payload)
        except ParseError as e:
            self._parse_failed(TopicClass.WEATHER_UPDATE, topic, e.message)
            return False

        self.stats.weather += 1
        try:
            sample = await asyncio.to_thread(self._gateway.insert_weather_sample, sample)
        except StorageError as e:
            self.stats.storage_errors += 1
            logger.error("[INGEST] Weather sample not persisted: %s", e.message)
        self._safe_broadcast(ROOM_WEATHER, "weather:update", sample.to_payload())
        return True

    async def handle_system_message(self, topic: str, payload: bytes) -> bool:
        self.stats.system += 1
        try:
            body = decode_object(payload, topic)
        except ParseError:
            logger.info("[INGEST] System message topic=%s raw=%r", topic, bytes(payload)[:200])
            return True
        if topic == self._topics.system_alerts:
            logger.warning("[INGEST] System alert: %s", body)
        else:
            logger.info("[INGEST] System status: %s", body.get("status", body))
        return True

    # ------------------------------------------------------------------
    # REST operations
    # ------------------------------------------------------------------

    async def submit_reading(
        self,
        sensor_id: str,
        data: Mapping[str, Any],
        quality: ReadingQuality = ReadingQuality.GOOD,
        raw_value: Optional[str] = None,
    ) -> StoredReading:
        """Persist a reading for a registered, active sensor.

        Raises NotFoundError, ValidationError or StorageError; on any of
        them nothing is broadcast.
        """
        sensor = await asyncio.to_thread(self._gateway.get_sensor, sensor_id)
        if sensor is None:
            raise NotFoundError("Sensor not found")
        if not sensor.is_active:
            raise ValidationError.for_field("sensorId", "Sensor is inactive")
        if not data or not any(is_numeric(v) for v in data.values()):
            raise ValidationError.for_field("data", "Data must contain at least one numeric value")

        event = ReadingEvent(
            sensor_id=sensor_id,
            timestamp=utcnow(),
            data=dict(data),
            sensor_summary=sensor.summary,
            quality=quality,
            is_anomaly=self._is_anomaly(sensor_id, data),
            raw_value=raw_value,
        )
        stored = await self._persist_and_touch(event, path="rest")
        self._safe_broadcast(sensor_room(sensor_id), "iot:reading", event.to_payload())
        self._republish(event)
        return stored

    async def simulate_reading(self, sensor_id: Optional[str] = None) -> Tuple[StoredReading, Sensor]:
        """Generate, store and broadcast one synthetic reading."""
        if sensor_id:
            sensor = await asyncio.to_thread(self._gateway.get_sensor, sensor_id)
            if sensor is None:
                raise NotFoundError("Sensor not found")
        else:
            active, _ = await asyncio.to_thread(self._gateway.list_sensors, is_active=True, page=1, limit=1)
            if not active:
                raise NotFoundError("No active sensors found")
            sensor = active[0]

        data = random_reading_data(self._rng)
        event = ReadingEvent(
            sensor_id=sensor.sensor_id,
            timestamp=utcnow(),
            data=data,
            sensor_summary=sensor.summary,
            is_anomaly=self._is_anomaly(sensor.sensor_id, data),
        )
        stored = await self._persist_and_touch(event, path="simulate")
        payload = event.to_payload()
        payload["isSimulated"] = True
        self._safe_broadcast(sensor_room(sensor.sensor_id), "iot:reading", payload)
        return stored, sensor

    async def purge_expired_orphans(self) -> int:
        if self.orphan_policy != OrphanPolicy.EXPIRE:
            return 0
        older_than = utcnow() - self.orphan_ttl
        purged = await asyncio.to_thread(self._gateway.purge_orphan_readings, older_than)
        self.stats.orphans_purged += purged
        return purged

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_echo(self, body: Mapping[str, Any]) -> bool:
        return self._origin is not None and body.get("origin") == self._origin

    def _is_anomaly(self, sensor_id: str, data: Mapping[str, Any]) -> bool:
        try:
            return bool(self._anomaly_policy(sensor_id, data))
        except Exception:
            logger.exception("[INGEST] Anomaly policy failed for %s", sensor_id)
            return False

    def _parse_failed(self, topic_class: TopicClass, topic: str, reason: str) -> None:
        self.stats.parse_errors += 1
        BUS_MESSAGES_FAILED.labels(topic_class=topic_class.value, reason="parse_error").inc()
        logger.warning("[INGEST] Dropped malformed message topic=%s: %s", topic, reason)

    async def _lookup_sensor(self, sensor_id: str) -> Optional[Sensor]:
        try:
            return await asyncio.to_thread(self._gateway.get_sensor, sensor_id)
        except StorageError as e:
            self.stats.storage_errors += 1
            logger.error("[INGEST] Sensor lookup failed for %s: %s", sensor_id, e.message)
            return None

    async def _persist_from_bus(self, event: ReadingEvent, touch: bool) -> None:
        try:
            await asyncio.to_thread(self._breaker.call, lambda: self._gateway.insert_reading(event))
        except CircuitOpenError as e:
            self.stats.persist_skipped += 1
            logger.warning(
                "[INGEST] Store circuit open, reading for %s not persisted (retry in %.1fs)",
                event.sensor_id, e.remaining_seconds,
            )
            return
        except StorageError as e:
            self.stats.storage_errors += 1
            BUS_MESSAGES_FAILED.labels(topic_class=TopicClass.SENSOR_DATA.value, reason="storage_error").inc()
            logger.error("[INGEST] Reading for %s not persisted: %s", event.sensor_id, e.message)
            return

        READINGS_PERSISTED.labels(path="bus").inc()
        if touch:
            try:
                await asyncio.to_thread(self._gateway.touch_last_reading, event.sensor_id, event.timestamp)
            except StorageError as e:
                logger.error("[INGEST] lastReadingAt not updated for %s: %s", event.sensor_id, e.message)

    async def _persist_and_touch(self, event: ReadingEvent, path: str) -> StoredReading:
        stored = await asyncio.to_thread(self._gateway.insert_reading, event)
        READINGS_PERSISTED.labels(path=path).inc()
        try:
            await asyncio.to_thread(self._gateway.touch_last_reading, event.sensor_id, event.timestamp)
        except StorageError as e:
            logger.error("[INGEST] lastReadingAt not updated for %s: %s", event.sensor_id, e.message)
        return stored

    async def _broadcast_reading(self, event: ReadingEvent) -> None:
        self._safe_broadcast(sensor_room(event.sensor_id), "iot:reading", event.to_payload())

    def _safe_broadcast(self, room: str, event: str, data: Dict[str, Any]) -> None:
        try:
            self._broadcaster.broadcast(room, event, data)
        except Exception:
            logger.exception("[INGEST] Broadcast of %s to %s failed", event, room)

    def _republish(self, event: ReadingEvent) -> None:
        if self._publisher is None:
            return
        payload = event.to_payload()
        payload.pop("sensorSummary", None)
        payload["origin"] = self._origin
        self._publisher.publish(self._topics.sensor_data_topic(event.sensor_id), payload)
