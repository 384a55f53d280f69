"""Open-Meteo ``current_weather`` client.

One bounded attempt per call: a timeout becomes ``UpstreamTimeoutError``,
anything else that prevents a usable sample becomes ``UpstreamError``.
Retrying is left to the caller (the poller simply tries again next round).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from ..domain.reading import as_utc, utcnow
from ..domain.weather import WeatherSample, WeatherSource
from ..errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
DEFAULT_TIMEOUT_SECONDS = 8.0


class OpenMeteoClient:
    def __init__(
        self,
        base_url: str = OPEN_METEO_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def fetch_current(self, latitude: float, longitude: float) -> WeatherSample:
        params = {"latitude": latitude, "longitude": longitude, "current_weather": "true"}
        logger.info("[WEATHER] Fetching current weather lat=%s lon=%s", latitude, longitude)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            ) as client:
                resp = await client.get(self.base_url, params=params)
                resp.raise_for_status()
                body = resp.json()
        except httpx.TimeoutException as e:
            logger.error("[WEATHER] Upstream timed out after %.1fs", self.timeout)
            raise UpstreamTimeoutError(f"Weather API did not respond within {self.timeout:.0f}s") from e
        except httpx.HTTPStatusError as e:
            logger.error("[WEATHER] Upstream returned %d", e.response.status_code)
            raise UpstreamError(f"Weather API returned {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("[WEATHER] Upstream request failed: %s", e)
            raise UpstreamError(f"Failed to fetch weather data: {e}") from e

        sample = parse_current_weather(body)
        logger.info("[WEATHER] Fetched %.1f°C (%s)", sample.temperature, sample.weather_description)
        return sample


def parse_current_weather(body: Any) -> WeatherSample:
    """Map an Open-Meteo response body onto a ``WeatherSample`` (source=api)."""
    if not isinstance(body, dict) or not isinstance(body.get("current_weather"), dict):
        raise UpstreamError("Weather API response has no current_weather block")
    current: Dict[str, Any] = body["current_weather"]
    try:
        return WeatherSample(
            timestamp=_parse_time(current.get("time")),
            latitude=float(body["latitude"]),
            longitude=float(body["longitude"]),
            temperature=float(current["temperature"]),
            windspeed=float(current.get("windspeed", 0.0)),
            winddirection=float(current.get("winddirection", 0.0)),
            weathercode=int(current.get("weathercode", 0)),
            is_day=int(current.get("is_day", 1)),
            source=WeatherSource.API,
            metadata={
                "timezone": body.get("timezone"),
                "timezone_abbreviation": body.get("timezone_abbreviation"),
                "elevation": body.get("elevation"),
            },
        )
    except (KeyError, TypeError, ValueError) as e:
        raise UpstreamError(f"Unexpected weather API response: {e}") from e


def _parse_time(value: Any) -> datetime:
    # Open-Meteo reports GMT unless a timezone is requested, e.g. "2024-01-15T12:00".
    if not isinstance(value, str):
        return utcnow()
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return utcnow()
