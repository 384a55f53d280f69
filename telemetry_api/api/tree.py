"""Tree snapshot of the sensor network for the tree view.

    root -> sensor (by sensorId) -> "Latest Reading" -> one leaf per field

Pure and stateless: rebuilt from the current sensors and their latest
readings on every request.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping

from ..domain.reading import is_numeric, isoformat, unit_for
from ..domain.sensor import Sensor, StoredReading

ROOT_NAME = "CSIR IoT Network"


def format_value(value: Any) -> Any:
    if is_numeric(value):
        return f"{value:.1f}"
    return value


def reading_node(reading: StoredReading) -> Dict[str, Any]:
    return {
        "name": "Latest Reading",
        "type": "reading",
        "timestamp": isoformat(reading.timestamp),
        "children": [
            {"name": key, "type": "data", "value": format_value(value), "unit": unit_for(key)}
            for key, value in reading.data.items()
        ],
    }


def sensor_node(sensor: Sensor, latest: StoredReading | None) -> Dict[str, Any]:
    return {
        "name": sensor.name,
        "type": "sensor",
        "sensorId": sensor.sensor_id,
        "sensorType": sensor.type,
        "isActive": sensor.is_active,
        "location": dict(sensor.location),
        "children": [reading_node(latest)] if latest is not None else [],
    }


def build_tree(sensors: Iterable[Sensor], latest_by_id: Mapping[str, StoredReading]) -> Dict[str, Any]:
    ordered = sorted(sensors, key=lambda s: s.sensor_id)
    return {
        "name": ROOT_NAME,
        "type": "root",
        "children": [sensor_node(s, latest_by_id.get(s.sensor_id)) for s in ordered],
    }
