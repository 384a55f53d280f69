"""Synthetic telemetry for simulated sensors."""

from .profiles import (
    SENSOR_PROFILES,
    SensorProfile,
    generate_sensor_data,
    generate_weather,
    random_reading_data,
)
from .simulator import TelemetrySimulator

__all__ = [
    "SENSOR_PROFILES",
    "SensorProfile",
    "generate_sensor_data",
    "generate_weather",
    "random_reading_data",
    "TelemetrySimulator",
]
