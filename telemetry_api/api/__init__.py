"""REST read/write API mounted under ``/api``."""

from .handlers import install_exception_handlers
from .health import router as health_router
from .iot import router as iot_router
from .sensors import router as sensors_router
from .tree import build_tree
from .weather import router as weather_router

__all__ = [
    "install_exception_handlers",
    "health_router",
    "iot_router",
    "sensors_router",
    "weather_router",
    "build_tree",
]
