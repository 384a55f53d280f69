"""Upstream weather API client and store-and-broadcast service."""

from .client import OPEN_METEO_URL, OpenMeteoClient, parse_current_weather
from .service import WeatherService

__all__ = ["OPEN_METEO_URL", "OpenMeteoClient", "parse_current_weather", "WeatherService"]
