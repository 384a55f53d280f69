"""Typed persistence operations over the relational store.

All methods are blocking; async callers go through ``asyncio.to_thread``.
Every SQLAlchemy failure surfaces as ``StorageError``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from common.db import build_engine, build_session_factory

from ..domain.reading import ReadingEvent, ReadingQuality, as_utc, is_numeric, utcnow
from ..domain.sensor import Sensor, StoredReading
from ..domain.weather import WeatherSample, WeatherSource
from ..errors import ConflictError, NotFoundError, StorageError, ValidationError
from .models import Base, ReadingRow, SensorRow, WeatherSampleRow

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_TOLERANCE = 0.1

_UPDATABLE_SENSOR_FIELDS = ("name", "type", "location", "is_active", "configuration", "metadata")


def _naive(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def _sensor_from_row(row: SensorRow) -> Sensor:
    return Sensor(
        sensor_id=row.sensor_id,
        name=row.name,
        type=row.type,
        location={
            "latitude": row.latitude,
            "longitude": row.longitude,
            "name": row.location_name,
            "altitude": row.altitude,
        },
        is_active=row.is_active,
        last_reading_at=as_utc(row.last_reading_at) if row.last_reading_at else None,
        configuration=dict(row.configuration or {}),
        metadata=dict(row.meta or {}),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _apply_location(row: SensorRow, location: Mapping[str, Any]) -> None:
    row.latitude = float(location["latitude"])
    row.longitude = float(location["longitude"])
    row.location_name = str(location.get("name") or "")
    row.altitude = float(location.get("altitude") or 0.0)


def _reading_from_row(row: ReadingRow) -> StoredReading:
    return StoredReading(
        id=row.id,
        sensor_id=row.sensor_id,
        timestamp=as_utc(row.timestamp),
        data=dict(row.data or {}),
        quality=ReadingQuality(row.quality),
        is_anomaly=row.is_anomaly,
        raw_value=row.raw_value,
        created_at=as_utc(row.created_at),
    )


def _weather_from_row(row: WeatherSampleRow) -> WeatherSample:
    return WeatherSample(
        id=row.id,
        timestamp=as_utc(row.timestamp),
        latitude=row.latitude,
        longitude=row.longitude,
        temperature=row.temperature,
        windspeed=row.windspeed,
        winddirection=row.winddirection,
        weathercode=row.weathercode,
        is_day=row.is_day,
        source=WeatherSource(row.source),
        metadata=dict(row.meta or {}),
    )


def _field_stats(values: Sequence[float]) -> Dict[str, Any]:
    if not values:
        return {"avg": None, "min": None, "max": None, "count": 0}
    return {
        "avg": sum(values) / len(values),
        "min": min(values),
        "max": max(values),
        "count": len(values),
    }


class PersistenceGateway:
    """Sensors, readings and weather samples over one SQLAlchemy engine.

    No caching and no locking: every call opens a short session.
    """

    def __init__(self, engine: Engine, session_factory: Optional[sessionmaker[Session]] = None):
        self._engine = engine
        self._session_factory = session_factory or build_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "PersistenceGateway":
        return cls(build_engine(database_url))

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("[DB] %s failed: %s", operation, e)
            raise StorageError(f"{operation} failed") from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            logger.error("[DB] create_schema failed: %s", e)
            raise StorageError("create_schema failed") from e
        logger.info("[DB] Schema ready")

    def ping(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning("[DB] Ping failed: %s", e)
            return False

    def dispose(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Sensors
    # ------------------------------------------------------------------

    def create_sensor(self, sensor: Sensor) -> Sensor:
        now = _naive(utcnow())
        with self._session("create_sensor") as session:
            existing = session.scalar(select(SensorRow.id).where(SensorRow.sensor_id == sensor.sensor_id))
            if existing is not None:
                raise ConflictError("Sensor with this ID already exists")
            row = SensorRow(
                sensor_id=sensor.sensor_id,
                name=sensor.name,
                type=sensor.type,
                is_active=sensor.is_active,
                configuration=dict(sensor.configuration),
                meta=dict(sensor.metadata),
                created_at=now,
                updated_at=now,
            )
            _apply_location(row, sensor.location)
            session.add(row)
            try:
                session.flush()
            except IntegrityError as e:
                # Lost a race with a concurrent create.
                raise ConflictError("Sensor with this ID already exists") from e
            created = _sensor_from_row(row)
        logger.info("[DB] Sensor created sensor_id=%s", sensor.sensor_id)
        return created

    def get_sensor(self, sensor_id: str) -> Optional[Sensor]:
        with self._session("get_sensor") as session:
            row = session.scalar(select(SensorRow).where(SensorRow.sensor_id == sensor_id))
            return _sensor_from_row(row) if row is not None else None

    def find_sensors(self, sensor_ids: Iterable[str]) -> Dict[str, Sensor]:
        ids = list(set(sensor_ids))
        if not ids:
            return {}
        with self._session("find_sensors") as session:
            rows = session.scalars(select(SensorRow).where(SensorRow.sensor_id.in_(ids))).all()
            return {row.sensor_id: _sensor_from_row(row) for row in rows}

    def list_sensors(
        self,
        *,
        type: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Sensor], int]:
        conditions = []
        if type is not None:
            conditions.append(SensorRow.type == type)
        if is_active is not None:
            conditions.append(SensorRow.is_active == is_active)

        with self._session("list_sensors") as session:
            total = session.scalar(select(func.count(SensorRow.id)).where(*conditions)) or 0
            rows = session.scalars(
                select(SensorRow)
                .where(*conditions)
                .order_by(SensorRow.created_at.desc(), SensorRow.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            return [_sensor_from_row(r) for r in rows], total

    def all_sensors(self) -> List[Sensor]:
        """Every sensor ordered by ``sensor_id``."""
        with self._session("all_sensors") as session:
            rows = session.scalars(select(SensorRow).order_by(SensorRow.sensor_id)).all()
            return [_sensor_from_row(r) for r in rows]

    def update_sensor(self, sensor_id: str, changes: Mapping[str, Any]) -> Sensor:
        if "sensor_id" in changes and changes["sensor_id"] != sensor_id:
            raise ValidationError.for_field("sensorId", "sensorId cannot be changed")
        unknown = set(changes) - set(_UPDATABLE_SENSOR_FIELDS) - {"sensor_id"}
        if unknown:
            raise ValidationError(f"Unknown sensor fields: {', '.join(sorted(unknown))}")

        with self._session("update_sensor") as session:
            row = session.scalar(select(SensorRow).where(SensorRow.sensor_id == sensor_id))
            if row is None:
                raise NotFoundError("Sensor not found")
            if "name" in changes:
                row.name = changes["name"]
            if "type" in changes:
                row.type = changes["type"]
            if "location" in changes:
                _apply_location(row, changes["location"])
            if "is_active" in changes:
                row.is_active = bool(changes["is_active"])
            if "configuration" in changes:
                row.configuration = dict(changes["configuration"])
            if "metadata" in changes:
                row.meta = dict(changes["metadata"])
            row.updated_at = _naive(utcnow())
            session.flush()
            return _sensor_from_row(row)

    def delete_sensor(self, sensor_id: str) -> int:
        """Delete a sensor and its readings. Returns the number of readings removed."""
        with self._session("delete_sensor") as session:
            deleted = session.execute(
                delete(SensorRow).where(SensorRow.sensor_id == sensor_id),
                execution_options={"synchronize_session": False},
            )
            if deleted.rowcount == 0:
                raise NotFoundError("Sensor not found")
            readings = session.execute(
                delete(ReadingRow).where(ReadingRow.sensor_id == sensor_id),
                execution_options={"synchronize_session": False},
            )
        logger.info("[DB] Sensor deleted sensor_id=%s readings=%d", sensor_id, readings.rowcount)
        return readings.rowcount

    def touch_last_reading(self, sensor_id: str, at: datetime) -> bool:
        """Advance ``last_reading_at``; never moves it backwards."""
        at_naive = _naive(at)
        with self._session("touch_last_reading") as session:
            result = session.execute(
                update(SensorRow)
                .where(SensorRow.sensor_id == sensor_id)
                .where((SensorRow.last_reading_at.is_(None)) | (SensorRow.last_reading_at < at_naive))
                .values(last_reading_at=at_naive),
                execution_options={"synchronize_session": False},
            )
            return result.rowcount > 0

    def record_sensor_status(self, sensor_id: str, status: Mapping[str, Any]) -> bool:
        """Store the last bus status under ``metadata.status``. False if unknown."""
        with self._session("record_sensor_status") as session:
            row = session.scalar(select(SensorRow).where(SensorRow.sensor_id == sensor_id))
            if row is None:
                return False
            # Reassign so the JSON column is flagged dirty.
            row.meta = {**(row.meta or {}), "status": dict(status)}
            return True

    def count_sensors(self, *, is_active: Optional[bool] = None) -> int:
        stmt = select(func.count(SensorRow.id))
        if is_active is not None:
            stmt = stmt.where(SensorRow.is_active == is_active)
        with self._session("count_sensors") as session:
            return session.scalar(stmt) or 0

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def insert_reading(self, event: ReadingEvent) -> StoredReading:
        if not event.data:
            raise ValidationError.for_field("data", "Data must be a non-empty object")
        with self._session("insert_reading") as session:
            row = ReadingRow(
                sensor_id=event.sensor_id,
                timestamp=_naive(event.timestamp),
                data=dict(event.data),
                quality=event.quality.value,
                is_anomaly=event.is_anomaly,
                raw_value=event.raw_value,
                created_at=_naive(utcnow()),
            )
            session.add(row)
            session.flush()
            return _reading_from_row(row)

    def list_readings(
        self,
        *,
        sensor_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[StoredReading], int]:
        conditions = []
        if sensor_id is not None:
            conditions.append(ReadingRow.sensor_id == sensor_id)
        with self._session("list_readings") as session:
            total = session.scalar(select(func.count(ReadingRow.id)).where(*conditions)) or 0
            rows = session.scalars(
                select(ReadingRow)
                .where(*conditions)
                .order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            return [_reading_from_row(r) for r in rows], total

    def find_readings_by_time_range(
        self,
        sensor_id: str,
        start: datetime,
        end: datetime,
        limit: int = 100,
    ) -> List[StoredReading]:
        with self._session("find_readings_by_time_range") as session:
            rows = session.scalars(
                select(ReadingRow)
                .where(ReadingRow.sensor_id == sensor_id)
                .where(ReadingRow.timestamp >= _naive(start))
                .where(ReadingRow.timestamp <= _naive(end))
                .order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc())
                .limit(limit)
            ).all()
            return [_reading_from_row(r) for r in rows]

    def find_latest_reading(self, sensor_id: str) -> Optional[StoredReading]:
        with self._session("find_latest_reading") as session:
            row = session.scalar(
                select(ReadingRow)
                .where(ReadingRow.sensor_id == sensor_id)
                .order_by(ReadingRow.timestamp.desc(), ReadingRow.id.desc())
                .limit(1)
            )
            return _reading_from_row(row) if row is not None else None

    def find_latest_reading_per_sensor(self) -> List[StoredReading]:
        """One reading per sensor id, the greatest by ``(timestamp, id)``.

        Ordered by sensor id so repeated calls compare equal.
        """
        ranked = (
            select(
                ReadingRow.id.label("id"),
                func.row_number()
                .over(
                    partition_by=ReadingRow.sensor_id,
                    order_by=(ReadingRow.timestamp.desc(), ReadingRow.id.desc()),
                )
                .label("rn"),
            )
        ).subquery()
        stmt = (
            select(ReadingRow)
            .join(ranked, ranked.c.id == ReadingRow.id)
            .where(ranked.c.rn == 1)
            .order_by(ReadingRow.sensor_id)
        )
        with self._session("find_latest_reading_per_sensor") as session:
            return [_reading_from_row(r) for r in session.scalars(stmt).all()]

    def aggregate_statistics(
        self,
        *,
        sensor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """``{"readingCount": n, "fields": {name: {avg, min, max, count}}}``.

        Absent and non-numeric values are skipped per field. With no
        ``fields`` every numeric field seen in the window is reported.
        """
        stmt = select(ReadingRow.data)
        if sensor_id is not None:
            stmt = stmt.where(ReadingRow.sensor_id == sensor_id)
        if since is not None:
            stmt = stmt.where(ReadingRow.timestamp >= _naive(since))
        if until is not None:
            stmt = stmt.where(ReadingRow.timestamp <= _naive(until))

        with self._session("aggregate_statistics") as session:
            rows = session.scalars(stmt).all()

        values: Dict[str, List[float]] = {name: [] for name in (fields or [])}
        for data in rows:
            for name, value in (data or {}).items():
                if fields and name not in values:
                    continue
                if is_numeric(value):
                    values.setdefault(name, []).append(float(value))

        return {
            "readingCount": len(rows),
            "fields": {name: _field_stats(vals) for name, vals in sorted(values.items())},
        }

    def count_readings(self, *, since: Optional[datetime] = None) -> int:
        stmt = select(func.count(ReadingRow.id))
        if since is not None:
            stmt = stmt.where(ReadingRow.timestamp >= _naive(since))
        with self._session("count_readings") as session:
            return session.scalar(stmt) or 0

    def purge_orphan_readings(self, older_than: datetime) -> int:
        """Delete readings with no registered sensor older than ``older_than``."""
        registered = select(SensorRow.sensor_id)
        with self._session("purge_orphan_readings") as session:
            result = session.execute(
                delete(ReadingRow)
                .where(ReadingRow.sensor_id.not_in(registered))
                .where(ReadingRow.timestamp < _naive(older_than)),
                execution_options={"synchronize_session": False},
            )
            purged = result.rowcount
        if purged:
            logger.info("[DB] Purged %d orphan readings older than %s", purged, older_than.isoformat())
        return purged

    # ------------------------------------------------------------------
    # Weather
    # ------------------------------------------------------------------

    def insert_weather_sample(self, sample: WeatherSample) -> WeatherSample:
        with self._session("insert_weather_sample") as session:
            row = WeatherSampleRow(
                timestamp=_naive(sample.timestamp),
                latitude=sample.latitude,
                longitude=sample.longitude,
                temperature=sample.temperature,
                windspeed=sample.windspeed,
                winddirection=sample.winddirection,
                weathercode=sample.weathercode,
                is_day=sample.is_day,
                source=sample.source.value,
                meta=dict(sample.metadata),
                created_at=_naive(utcnow()),
            )
            session.add(row)
            session.flush()
            return _weather_from_row(row)

    def _near(self, latitude: float, longitude: float, tolerance: float):
        return (
            WeatherSampleRow.latitude.between(latitude - tolerance, latitude + tolerance),
            WeatherSampleRow.longitude.between(longitude - tolerance, longitude + tolerance),
        )

    def find_weather_history(
        self,
        latitude: float,
        longitude: float,
        hours: float = 24,
        tolerance: float = DEFAULT_LOCATION_TOLERANCE,
    ) -> List[WeatherSample]:
        since = _naive(utcnow() - timedelta(hours=hours))
        with self._session("find_weather_history") as session:
            rows = session.scalars(
                select(WeatherSampleRow)
                .where(*self._near(latitude, longitude, tolerance))
                .where(WeatherSampleRow.timestamp >= since)
                .order_by(WeatherSampleRow.timestamp.desc(), WeatherSampleRow.id.desc())
            ).all()
            return [_weather_from_row(r) for r in rows]

    def find_latest_weather(self, limit: int = 10) -> List[WeatherSample]:
        with self._session("find_latest_weather") as session:
            rows = session.scalars(
                select(WeatherSampleRow)
                .order_by(WeatherSampleRow.timestamp.desc(), WeatherSampleRow.id.desc())
                .limit(limit)
            ).all()
            return [_weather_from_row(r) for r in rows]

    def aggregate_weather_statistics(
        self,
        latitude: float,
        longitude: float,
        hours: float = 24,
        tolerance: float = DEFAULT_LOCATION_TOLERANCE,
    ) -> Dict[str, Any]:
        since = _naive(utcnow() - timedelta(hours=hours))
        stmt = (
            select(
                func.avg(WeatherSampleRow.temperature),
                func.min(WeatherSampleRow.temperature),
                func.max(WeatherSampleRow.temperature),
                func.avg(WeatherSampleRow.windspeed),
                func.count(WeatherSampleRow.id),
            )
            .where(*self._near(latitude, longitude, tolerance))
            .where(WeatherSampleRow.timestamp >= since)
        )
        with self._session("aggregate_weather_statistics") as session:
            avg_t, min_t, max_t, avg_w, count = session.execute(stmt).one()
        return {
            "avgTemperature": float(avg_t) if avg_t is not None else None,
            "minTemperature": min_t,
            "maxTemperature": max_t,
            "avgWindspeed": float(avg_w) if avg_w is not None else None,
            "count": count or 0,
        }
