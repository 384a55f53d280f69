from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config import Settings, get_settings

from . import __version__
from .api import health_router, install_exception_handlers, iot_router, sensors_router, weather_router
from .broadcaster.endpoint import router as ws_router
from .services import TelemetryServices

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[TelemetryServices] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = services or TelemetryServices(settings)
        app.state.services = container
        await container.start()
        logger.info("IoT Telemetry Hub ready env=%s", settings.environment)
        try:
            yield
        finally:
            await container.shutdown()

    app = FastAPI(title="IoT Telemetry Hub", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origin.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)

    for router in (health_router, sensors_router, iot_router, weather_router):
        app.include_router(router, prefix="/api")
    app.include_router(ws_router)

    @app.get("/")
    def root():
        return {
            "success": True,
            "service": "IoT Telemetry Hub",
            "version": __version__,
            "endpoints": {"health": "/api/health", "docs": "/docs", "websocket": "/ws"},
        }

    return app
