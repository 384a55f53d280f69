"""Simulated sensor profiles and synthetic measurement generation."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from ..domain.reading import SensorType, utcnow

SIMULATED_WEATHER_CODES = (0, 1, 2, 3, 45, 51, 61, 80)


@dataclass(frozen=True)
class SensorProfile:
    sensor_id: str
    name: str
    type: SensorType
    location: Mapping[str, object]
    base_values: Mapping[str, float] = field(default_factory=dict)

    def registration(self) -> dict:
        """Body accepted by ``POST /api/sensors``."""
        return {
            "sensorId": self.sensor_id,
            "name": self.name,
            "type": self.type.value,
            "location": dict(self.location),
        }


SENSOR_PROFILES: List[SensorProfile] = [
    SensorProfile(
        sensor_id="SENSOR-PRETORIA-001",
        name="CSIR Pretoria Main Campus",
        type=SensorType.COMBINED,
        location={"latitude": -25.75, "longitude": 28.19, "name": "Pretoria, Gauteng"},
        base_values={"temperature": 25, "humidity": 55, "pressure": 1015, "windspeed": 10, "winddirection": 180},
    ),
    SensorProfile(
        sensor_id="SENSOR-PRETORIA-002",
        name="CSIR Research Lab A",
        type=SensorType.TEMPERATURE,
        location={"latitude": -25.7512, "longitude": 28.1923, "name": "Pretoria Research Park"},
        base_values={"temperature": 22, "humidity": 45},
    ),
    SensorProfile(
        sensor_id="SENSOR-CPT-001",
        name="CSIR Cape Town Office",
        type=SensorType.COMBINED,
        location={"latitude": -33.9249, "longitude": 18.4241, "name": "Cape Town, Western Cape"},
        base_values={"temperature": 20, "humidity": 65, "pressure": 1020, "windspeed": 15, "winddirection": 270},
    ),
    SensorProfile(
        sensor_id="SENSOR-DBN-001",
        name="CSIR Durban Facility",
        type=SensorType.HUMIDITY,
        location={"latitude": -29.8587, "longitude": 31.0218, "name": "Durban, KwaZulu-Natal"},
        base_values={"temperature": 28, "humidity": 75},
    ),
]


def _diurnal(hour: int) -> float:
    # +1 at noon, -1 at midnight.
    return math.sin((hour - 6) * math.pi / 12)


def generate_sensor_data(
    profile: SensorProfile,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, float]:
    """One reading for ``profile``; only fields present in its base values, plus battery and signal."""
    rng = rng or random.Random()
    hour = (now or utcnow()).hour
    base = profile.base_values
    data: Dict[str, float] = {}

    if "temperature" in base:
        data["temperature"] = base["temperature"] + _diurnal(hour) * 5 + (rng.random() - 0.5) * 2
    if "humidity" in base:
        humidity = base["humidity"] - _diurnal(hour) * 10 + (rng.random() - 0.5) * 5
        data["humidity"] = max(20.0, min(95.0, humidity))
    if "pressure" in base:
        data["pressure"] = base["pressure"] + (rng.random() - 0.5) * 5
    if "windspeed" in base:
        gust = rng.random() * 10 if rng.random() > 0.8 else 0.0
        data["windspeed"] = max(0.0, base["windspeed"] + (rng.random() - 0.5) * 5 + gust)
    if "winddirection" in base:
        data["winddirection"] = (base["winddirection"] + (rng.random() - 0.5) * 30 + 360) % 360

    data["battery"] = 85 + rng.random() * 15
    data["signal_strength"] = -50 - rng.random() * 30
    return data


def random_reading_data(rng: Optional[random.Random] = None) -> Dict[str, float]:
    """Uniform random weather-style reading used by the REST simulate operation."""
    rng = rng or random.Random()
    return {
        "temperature": 20 + rng.random() * 15,
        "humidity": 40 + rng.random() * 40,
        "pressure": 1000 + rng.random() * 30,
        "windspeed": rng.random() * 20,
        "winddirection": float(rng.randrange(360)),
    }


def generate_weather(
    latitude: float = -25.75,
    longitude: float = 28.19,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> dict:
    rng = rng or random.Random()
    now = now or utcnow()
    return {
        "latitude": latitude,
        "longitude": longitude,
        "temperature": 20 + rng.random() * 15,
        "windspeed": 5 + rng.random() * 20,
        "winddirection": rng.randrange(360),
        "weathercode": rng.choice(SIMULATED_WEATHER_CODES),
        "is_day": 1 if 6 <= now.hour < 18 else 0,
        "timestamp": now.isoformat().replace("+00:00", "Z"),
    }
