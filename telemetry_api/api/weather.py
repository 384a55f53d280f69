"""Weather endpoints: live upstream fetch plus stored history."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..domain.reading import isoformat, utcnow
from ..domain.weather import WEATHER_CODES, describe_weather_code
from ..errors import ValidationError
from .deps import get_services
from .responses import ok

router = APIRouter(prefix="/weather", tags=["weather"])

_lat = Query(None, ge=-90, le=90)
_lon = Query(None, ge=-180, le=180)


def _coords(services, latitude, longitude):
    settings = services.settings
    return (
        settings.weather_default_latitude if latitude is None else latitude,
        settings.weather_default_longitude if longitude is None else longitude,
    )


@router.get("/current")
async def current(latitude: Optional[float] = _lat, longitude: Optional[float] = _lon, services=Depends(get_services)):
    lat, lon = _coords(services, latitude, longitude)
    sample = await services.weather.fetch_current(lat, lon)
    return ok(sample.to_payload(), source="open-meteo-api", timestamp=isoformat(utcnow()))


@router.get("/history")
def history(
    latitude: Optional[float] = _lat,
    longitude: Optional[float] = _lon,
    hours: int = Query(24, ge=1, le=24 * 365),
    services=Depends(get_services),
):
    lat, lon = _coords(services, latitude, longitude)
    samples = services.gateway.find_weather_history(lat, lon, hours=hours)
    return ok(
        [s.to_payload() for s in samples],
        count=len(samples),
        query={"latitude": lat, "longitude": lon, "hours": hours},
    )


@router.get("/latest")
def latest(limit: int = Query(10, ge=1), services=Depends(get_services)):
    max_limit = services.settings.pagination_max_limit
    if limit > max_limit:
        raise ValidationError.for_field("limit", f"Limit must be between 1 and {max_limit}")
    samples = services.gateway.find_latest_weather(limit)
    return ok([s.to_payload() for s in samples], count=len(samples))


@router.get("/statistics")
def statistics(
    latitude: Optional[float] = _lat,
    longitude: Optional[float] = _lon,
    hours: int = Query(24, ge=1, le=24 * 365),
    services=Depends(get_services),
):
    lat, lon = _coords(services, latitude, longitude)
    stats = services.gateway.aggregate_weather_statistics(lat, lon, hours=hours)
    return ok(stats, query={"latitude": lat, "longitude": lon, "hours": hours})


@router.get("/codes")
def codes():
    return ok([{"code": code, "description": text} for code, text in sorted(WEATHER_CODES.items())])


@router.get("/code/{code}")
def code(code: int):
    return ok({"code": code, "description": describe_weather_code(code)})
