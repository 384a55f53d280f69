"""Domain model for sensor readings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ReadingQuality(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class SensorType(str, Enum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESSURE = "pressure"
    WIND = "wind"
    COMBINED = "combined"


class KnownField(str, Enum):
    """Measurement names with a fixed display unit.

    ``data`` maps are open: fields outside this enum are accepted and
    stored as-is, they just have no unit.
    """

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESSURE = "pressure"
    WINDSPEED = "windspeed"
    WINDDIRECTION = "winddirection"
    BATTERY = "battery"
    SIGNAL_STRENGTH = "signal_strength"


FIELD_UNITS: Dict[KnownField, str] = {
    KnownField.TEMPERATURE: "°C",
    KnownField.HUMIDITY: "%",
    KnownField.PRESSURE: "hPa",
    KnownField.WINDSPEED: "km/h",
    KnownField.WINDDIRECTION: "°",
    KnownField.BATTERY: "%",
    KnownField.SIGNAL_STRENGTH: "dBm",
}

# Fields merged from the top level of a bus payload into ``data``.
MERGED_FIELDS = (
    KnownField.TEMPERATURE,
    KnownField.HUMIDITY,
    KnownField.PRESSURE,
    KnownField.WINDSPEED,
    KnownField.WINDDIRECTION,
)


def unit_for(field_name: str) -> str:
    try:
        return FIELD_UNITS[KnownField(field_name)]
    except ValueError:
        return ""


def is_numeric(value: Any) -> bool:
    # bool is an int subclass but never a measurement.
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Stores may hand back naive datetimes; they are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class SensorSummary:
    """Sensor attributes attached to a broadcast reading."""

    name: str
    type: str
    location: Mapping[str, Any]

    def to_payload(self) -> dict:
        return {"name": self.name, "type": self.type, "location": dict(self.location)}


@dataclass
class ReadingEvent:
    """Normalized reading, the one shape shared by broadcast and REST reads.

    Flow: bus / REST -> normalizer -> ReadingEvent -> {gateway, broadcaster}
    """

    sensor_id: str
    timestamp: datetime
    data: Dict[str, Any]
    sensor_summary: Optional[SensorSummary] = None
    quality: ReadingQuality = ReadingQuality.GOOD
    is_anomaly: bool = False
    raw_value: Optional[str] = None
    received_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict:
        payload = {
            "sensorId": self.sensor_id,
            "timestamp": isoformat(self.timestamp),
            "data": dict(self.data),
        }
        if self.sensor_summary is not None:
            payload["sensorSummary"] = self.sensor_summary.to_payload()
        return payload
