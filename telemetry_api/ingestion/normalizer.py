"""Bus payload normalization.

Every function here is pure and raises ``ParseError`` on malformed input;
the ingestion handlers decide what to do with the error.

Reading payload shape (fields beyond ``data`` are optional)::

    {"sensorId": "...", "timestamp": "2026-02-01T12:00:00Z",
     "name": "...", "type": "...", "location": {...}, "messageId": "...",
     "data": {"temperature": 24.1, ...}, "humidity": 51.0}

Top-level non-envelope fields are merged into ``data``; the nested object
wins on conflicts.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Union

import orjson

from ..domain.reading import ReadingEvent, ReadingQuality, as_utc, is_numeric, utcnow
from ..domain.weather import WeatherSample, WeatherSource
from ..errors import ParseError

ENVELOPE_KEYS = frozenset({
    "sensorId",
    "timestamp",
    "name",
    "type",
    "location",
    "messageId",
    "quality",
    "rawValue",
    "origin",
})

MAX_FUTURE_SKEW = timedelta(minutes=5)

RawPayload = Union[bytes, bytearray, str, Mapping[str, Any]]


def decode_object(payload: RawPayload, topic: Optional[str] = None) -> Dict[str, Any]:
    """Decode a JSON object payload."""
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        decoded = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Payload is not valid JSON: {e}", topic=topic) from e
    if not isinstance(decoded, dict):
        raise ParseError("Payload must be a JSON object", topic=topic)
    return decoded


def resolve_timestamp(value: Any, received_at: datetime) -> datetime:
    """Payload timestamp when it parses and is not too far ahead, else ``received_at``."""
    if not isinstance(value, str) or not value:
        return received_at
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return received_at
    parsed = as_utc(parsed)
    if parsed - received_at > MAX_FUTURE_SKEW:
        return received_at
    return parsed


def extract_data(payload: Mapping[str, Any], topic: Optional[str] = None) -> Dict[str, Any]:
    nested = payload.get("data")
    if nested is not None and not isinstance(nested, Mapping):
        raise ParseError("'data' must be an object", topic=topic)

    data: Dict[str, Any] = {
        key: value
        for key, value in payload.items()
        if key not in ENVELOPE_KEYS and key != "data"
    }
    if nested:
        data.update(nested)

    if not any(is_numeric(v) for v in data.values()):
        raise ParseError("Reading has no numeric measurements", topic=topic)
    return data


def _quality(value: Any) -> ReadingQuality:
    try:
        return ReadingQuality(value) if value is not None else ReadingQuality.GOOD
    except ValueError:
        return ReadingQuality.GOOD


def normalize_reading(
    topic: str,
    payload: RawPayload,
    sensor_id: str,
    received_at: Optional[datetime] = None,
) -> ReadingEvent:
    received_at = as_utc(received_at) if received_at else utcnow()
    body = decode_object(payload, topic)
    raw_value = body.get("rawValue")
    return ReadingEvent(
        sensor_id=sensor_id,
        timestamp=resolve_timestamp(body.get("timestamp"), received_at),
        data=extract_data(body, topic),
        quality=_quality(body.get("quality")),
        raw_value=str(raw_value) if raw_value is not None else None,
        received_at=received_at,
    )


def _number(body: Mapping[str, Any], key: str, default: Optional[float] = None, topic: Optional[str] = None) -> float:
    value = body.get(key, default)
    if not is_numeric(value):
        raise ParseError(f"'{key}' must be a number", topic=topic)
    return float(value)


def normalize_weather(
    topic: str,
    payload: RawPayload,
    received_at: Optional[datetime] = None,
    source: WeatherSource = WeatherSource.IOT,
) -> WeatherSample:
    received_at = as_utc(received_at) if received_at else utcnow()
    body = decode_object(payload, topic)

    latitude = _number(body, "latitude", topic=topic)
    longitude = _number(body, "longitude", topic=topic)
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise ParseError("Coordinates out of range", topic=topic)
    winddirection = _number(body, "winddirection", 0, topic) % 360
    is_day = body.get("is_day", 1)

    metadata = body.get("metadata")
    return WeatherSample(
        timestamp=resolve_timestamp(body.get("timestamp"), received_at),
        latitude=latitude,
        longitude=longitude,
        temperature=_number(body, "temperature", topic=topic),
        windspeed=_number(body, "windspeed", 0, topic),
        winddirection=winddirection,
        weathercode=int(_number(body, "weathercode", 0, topic)),
        is_day=1 if is_day in (1, True, "1") else 0,
        source=source,
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
    )


def normalize_status(topic: str, payload: RawPayload) -> Dict[str, Any]:
    return decode_object(payload, topic)
