"""Health, readiness and metrics endpoints."""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from .. import __version__
from ..domain.reading import isoformat, utcnow
from ..metrics import render_latest
from .deps import get_services

router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "CSIR IoT Backend API"


@router.get("")
def health():
    return {
        "success": True,
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": isoformat(utcnow()),
    }


@router.get("/detailed")
def detailed(services=Depends(get_services)):
    """Component status; 503 when the store is down, or the bus is down outside development."""
    db_ok = services.gateway.ping()
    bus_ok = services.bus_connected
    healthy = db_ok and (bus_ok or not services.settings.is_production)
    body = {
        "success": True,
        "status": "healthy" if healthy else "degraded",
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": isoformat(utcnow()),
        "uptime": round(time.monotonic() - services.started_monotonic, 1),
        "services": {
            "database": {"status": "connected" if db_ok else "disconnected", "connected": db_ok},
            "mqtt": {
                "status": "connected" if bus_ok else ("disabled" if services.bus is None else "disconnected"),
                "connected": bus_ok,
            },
            "websocket": {"status": "running", "connectedClients": services.broadcaster.connection_count},
        },
        "stats": services.stats(),
        "endpoints": {"weather": "/api/weather", "sensors": "/api/sensors", "iot": "/api/iot"},
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@router.get("/ready")
def ready(services=Depends(get_services)):
    if services.gateway.ping():
        return {"success": True, "status": "ready"}
    return JSONResponse(
        status_code=503,
        content={"success": False, "status": "not ready", "reason": "Database not connected"},
    )


@router.get("/live")
def live():
    return {"success": True, "status": "alive"}


@router.get("/metrics")
def metrics():
    body, content_type = render_latest()
    return Response(content=body, media_type=content_type)
