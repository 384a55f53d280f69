"""IoT reading endpoints: history, latest-per-sensor, submission, tree."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query

from ..domain.reading import as_utc, isoformat, utcnow
from ..domain.sensor import StoredReading
from ..errors import ValidationError
from ..persistence.gateway import PersistenceGateway
from ..schemas import ReadingSubmit, SimulateRequest
from .deps import Page, get_gateway, get_services, paging
from .responses import ok, paginated
from .tree import build_tree

router = APIRouter(prefix="/iot", tags=["iot"])


def latest_entry(reading: StoredReading, sensor) -> dict:
    """A stored reading in the ``iot:reading`` shape, plus its store fields."""
    entry = reading.to_payload()
    entry.update(reading.to_event(sensor.summary if sensor else None).to_payload())
    return entry


@router.get("/readings")
def list_readings(
    sensor_id: Optional[str] = Query(None, alias="sensorId"),
    page: Page = Depends(paging(50)),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    readings, total = gateway.list_readings(sensor_id=sensor_id, page=page.page, limit=page.limit)
    return paginated([r.to_payload() for r in readings], page.page, page.limit, total)


@router.get("/readings/latest")
def latest_readings(gateway: PersistenceGateway = Depends(get_gateway)):
    readings = gateway.find_latest_reading_per_sensor()
    sensors = gateway.find_sensors(r.sensor_id for r in readings)
    data = [latest_entry(r, sensors.get(r.sensor_id)) for r in readings]
    return ok(data, count=len(data))


@router.get("/readings/range")
def readings_in_range(
    sensor_id: str = Query(..., alias="sensorId"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1),
    services=Depends(get_services),
):
    """Readings of one sensor in ``[start, end]``, newest first. Defaults to the last 24 hours."""
    max_limit = services.settings.pagination_max_limit
    if limit > max_limit:
        raise ValidationError.for_field("limit", f"Limit must be between 1 and {max_limit}")
    end_at = as_utc(end) if end else utcnow()
    start_at = as_utc(start) if start else end_at - timedelta(hours=24)
    if start_at > end_at:
        raise ValidationError.for_field("start", "start must not be after end")
    readings = services.gateway.find_readings_by_time_range(sensor_id, start_at, end_at, limit)
    return ok(
        [r.to_payload() for r in readings],
        count=len(readings),
        query={"sensorId": sensor_id, "start": isoformat(start_at), "end": isoformat(end_at), "limit": limit},
    )


@router.post("/readings", status_code=201)
async def submit_reading(body: ReadingSubmit, services=Depends(get_services)):
    stored = await services.ingestion.submit_reading(
        body.sensor_id,
        body.data,
        quality=body.quality,
        raw_value=body.raw_value,
    )
    return ok(stored.to_payload(), message="Reading recorded successfully")


@router.post("/simulate")
async def simulate(body: Optional[SimulateRequest] = Body(None), services=Depends(get_services)):
    stored, sensor = await services.ingestion.simulate_reading(body.sensor_id if body else None)
    return ok(
        {"reading": stored.to_payload(), "sensor": {"sensorId": sensor.sensor_id, "name": sensor.name}},
        message="Simulated data broadcasted",
    )


@router.get("/status")
def status(services=Depends(get_services)):
    gateway = services.gateway
    return ok(
        {
            "sensors": {"total": gateway.count_sensors(), "active": gateway.count_sensors(is_active=True)},
            "readings": {
                "total": gateway.count_readings(),
                "lastHour": gateway.count_readings(since=utcnow() - timedelta(hours=1)),
            },
            "mqtt": {"connected": services.bus_connected},
            "websocket": {"connectedClients": services.broadcaster.connection_count},
            "timestamp": isoformat(utcnow()),
        }
    )


@router.get("/tree")
def tree(gateway: PersistenceGateway = Depends(get_gateway)):
    sensors = gateway.all_sensors()
    latest = {r.sensor_id: r for r in gateway.find_latest_reading_per_sensor()}
    return ok(build_tree(sensors, latest))
