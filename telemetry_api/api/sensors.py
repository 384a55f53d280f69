"""Sensor registry endpoints. Writes require ``sensors:write``."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import Capability, require
from ..domain.reading import SensorType, isoformat, utcnow
from ..domain.sensor import Sensor, default_configuration
from ..errors import NotFoundError, ValidationError
from ..persistence.gateway import PersistenceGateway
from ..schemas import SensorCreate, SensorUpdate
from .deps import Page, get_gateway, paging
from .responses import ok, paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sensors", tags=["sensors"])

_write = Depends(require(Capability.SENSORS_WRITE))


def _get_or_404(gateway: PersistenceGateway, sensor_id: str) -> Sensor:
    sensor = gateway.get_sensor(sensor_id)
    if sensor is None:
        raise NotFoundError("Sensor not found")
    return sensor


def _brief(sensor: Sensor) -> dict:
    return {"sensorId": sensor.sensor_id, "name": sensor.name, "type": sensor.type}


@router.get("")
def list_sensors(
    type: Optional[SensorType] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    page: Page = Depends(paging(10)),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    sensors, total = gateway.list_sensors(
        type=type.value if type else None,
        is_active=is_active,
        page=page.page,
        limit=page.limit,
    )
    return paginated([s.to_payload() for s in sensors], page.page, page.limit, total)


@router.get("/{sensor_id}")
def get_sensor(sensor_id: str, gateway: PersistenceGateway = Depends(get_gateway)):
    sensor = _get_or_404(gateway, sensor_id)
    latest = gateway.find_latest_reading(sensor_id)
    body = sensor.to_payload()
    body["latestReading"] = latest.data if latest else None
    body["latestReadingTime"] = isoformat(latest.timestamp) if latest else None
    return ok(body)


@router.post("", status_code=201, dependencies=[_write])
def create_sensor(body: SensorCreate, gateway: PersistenceGateway = Depends(get_gateway)):
    sensor = gateway.create_sensor(
        Sensor(
            sensor_id=body.sensor_id,
            name=body.name,
            type=body.type.value,
            location=body.location.model_dump(),
            is_active=True,
            configuration=body.configuration if body.configuration is not None else default_configuration(),
            metadata=body.metadata,
        )
    )
    logger.info("Sensor created sensor_id=%s", sensor.sensor_id)
    return ok(sensor.to_payload(), message="Sensor created successfully")


@router.put("/{sensor_id}", dependencies=[_write])
def update_sensor(sensor_id: str, body: SensorUpdate, gateway: PersistenceGateway = Depends(get_gateway)):
    changes = body.changes()
    if not changes:
        raise ValidationError("No updatable fields supplied")
    sensor = gateway.update_sensor(sensor_id, changes)
    return ok(sensor.to_payload(), message="Sensor updated successfully")


@router.delete("/{sensor_id}", dependencies=[_write])
def delete_sensor(sensor_id: str, gateway: PersistenceGateway = Depends(get_gateway)):
    removed = gateway.delete_sensor(sensor_id)
    return ok(message="Sensor deleted successfully", readingsDeleted=removed)


@router.get("/{sensor_id}/readings")
def sensor_readings(
    sensor_id: str,
    page: Page = Depends(paging(50)),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    sensor = _get_or_404(gateway, sensor_id)
    readings, total = gateway.list_readings(sensor_id=sensor_id, page=page.page, limit=page.limit)
    return paginated([r.to_payload() for r in readings], page.page, page.limit, total, sensor=_brief(sensor))


@router.get("/{sensor_id}/statistics")
def sensor_statistics(
    sensor_id: str,
    hours: int = Query(24, ge=1, le=24 * 365),
    fields: Optional[str] = Query(None, description="comma-separated field names"),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    sensor = _get_or_404(gateway, sensor_id)
    wanted = [f.strip() for f in fields.split(",") if f.strip()] if fields else None
    stats = gateway.aggregate_statistics(
        sensor_id=sensor_id,
        since=utcnow() - timedelta(hours=hours),
        fields=wanted,
    )
    return ok({"sensor": _brief(sensor), "statistics": stats, "period": {"hours": hours}})
