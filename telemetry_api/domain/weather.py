"""Weather observation model and WMO weather code table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .reading import isoformat


class WeatherSource(str, Enum):
    API = "api"
    IOT = "iot"
    SIMULATION = "simulation"


WEATHER_CODES: Dict[int, str] = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    56: "Light freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snowfall",
    73: "Moderate snowfall",
    75: "Heavy snowfall",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}


def describe_weather_code(code: Optional[int]) -> str:
    if code is None:
        return "Unknown"
    return WEATHER_CODES.get(int(code), "Unknown")


@dataclass
class WeatherSample:
    timestamp: datetime
    latitude: float
    longitude: float
    temperature: float
    windspeed: float = 0.0
    winddirection: float = 0.0
    weathercode: int = 0
    is_day: int = 1
    source: WeatherSource = WeatherSource.API
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    @property
    def weather_description(self) -> str:
        return describe_weather_code(self.weathercode)

    def to_payload(self) -> dict:
        payload = {
            "timestamp": isoformat(self.timestamp),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "temperature": self.temperature,
            "windspeed": self.windspeed,
            "winddirection": self.winddirection,
            "weathercode": self.weathercode,
            "is_day": self.is_day,
            "source": self.source.value,
            "metadata": dict(self.metadata),
            "weather_description": self.weather_description,
        }
        if self.id is not None:
            payload["id"] = self.id
        return payload
