"""SQLAlchemy tables.

Timestamps are stored as naive UTC; the gateway converts at the boundary.
``readings.sensor_id`` deliberately has no foreign key: bus-ingested readings
for unregistered sensors are kept according to the orphan policy.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SensorRow(Base):
    __tablename__ = "sensors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    location_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    altitude: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_reading_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    configuration: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes.
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class ReadingRow(Base):
    __tablename__ = "readings"
    __table_args__ = (
        Index("ix_readings_ts", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sensor_id: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    quality: Mapped[str] = mapped_column(String(10), nullable=False, default="good")
    is_anomaly: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# Newest-first scans per sensor.
Index("ix_readings_sensor_ts", ReadingRow.sensor_id, ReadingRow.timestamp.desc())


class WeatherSampleRow(Base):
    __tablename__ = "weather_samples"
    __table_args__ = (
        Index("ix_weather_source_ts", "source", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    windspeed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    winddirection: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    weathercode: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="api")
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


Index(
    "ix_weather_location_ts",
    WeatherSampleRow.latitude,
    WeatherSampleRow.longitude,
    WeatherSampleRow.timestamp.desc(),
)
