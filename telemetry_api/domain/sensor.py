"""Registered sensors and persisted readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .reading import ReadingEvent, ReadingQuality, SensorSummary, isoformat


DEFAULT_READING_INTERVAL_MS = 5000


def default_configuration() -> Dict[str, Any]:
    return {"readingInterval": DEFAULT_READING_INTERVAL_MS, "thresholds": {}}


@dataclass
class Sensor:
    sensor_id: str
    name: str
    type: str
    location: Dict[str, Any]
    is_active: bool = True
    last_reading_at: Optional[datetime] = None
    configuration: Dict[str, Any] = field(default_factory=default_configuration)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def summary(self) -> SensorSummary:
        return SensorSummary(name=self.name, type=self.type, location=self.location)

    def to_payload(self) -> dict:
        return {
            "sensorId": self.sensor_id,
            "name": self.name,
            "type": self.type,
            "location": dict(self.location),
            "isActive": self.is_active,
            "lastReadingAt": isoformat(self.last_reading_at),
            "configuration": dict(self.configuration),
            "metadata": dict(self.metadata),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass
class StoredReading:
    """A reading as it exists in the store (immutable once written)."""

    id: int
    sensor_id: str
    timestamp: datetime
    data: Dict[str, Any]
    quality: ReadingQuality = ReadingQuality.GOOD
    is_anomaly: bool = False
    raw_value: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_event(self, summary: Optional[SensorSummary] = None) -> ReadingEvent:
        return ReadingEvent(
            sensor_id=self.sensor_id,
            timestamp=self.timestamp,
            data=dict(self.data),
            sensor_summary=summary,
            quality=self.quality,
            is_anomaly=self.is_anomaly,
            raw_value=self.raw_value,
        )

    def to_payload(self) -> dict:
        payload = {
            "id": self.id,
            "sensorId": self.sensor_id,
            "timestamp": isoformat(self.timestamp),
            "data": dict(self.data),
            "quality": self.quality.value,
            "isAnomaly": self.is_anomaly,
            "createdAt": isoformat(self.created_at),
        }
        if self.raw_value is not None:
            payload["rawValue"] = self.raw_value
        return payload
