from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import TelemetryError
from .responses import error_body

logger = logging.getLogger(__name__)


def _field_name(loc) -> str:
    # ("body", "location", "latitude") -> "location.latitude"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or "request"


async def telemetry_error_handler(request: Request, exc: TelemetryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.details))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"field": _field_name(e.get("loc", ())), "message": e.get("msg", "Invalid value")} for e in exc.errors()]
    return JSONResponse(status_code=400, content=error_body("Validation failed", details))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error"))


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TelemetryError, telemetry_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
