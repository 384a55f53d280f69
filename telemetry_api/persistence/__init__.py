"""Persistence gateway over SQLAlchemy.

Tables: sensors, readings, weather_samples.
"""

from .gateway import PersistenceGateway
from .models import Base, ReadingRow, SensorRow, WeatherSampleRow

__all__ = ["PersistenceGateway", "Base", "ReadingRow", "SensorRow", "WeatherSampleRow"]
