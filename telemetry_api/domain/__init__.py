"""Domain models: sensors, readings, weather samples, topic scheme."""

from .reading import (
    FIELD_UNITS,
    KnownField,
    ReadingEvent,
    ReadingQuality,
    SensorSummary,
    SensorType,
    unit_for,
)
from .sensor import Sensor, StoredReading
from .topics import TopicClass, TopicRouter, TopicScheme, topic_matches
from .weather import WEATHER_CODES, WeatherSample, WeatherSource, describe_weather_code

__all__ = [
    "Sensor",
    "StoredReading",
    "FIELD_UNITS",
    "KnownField",
    "ReadingEvent",
    "ReadingQuality",
    "SensorSummary",
    "SensorType",
    "unit_for",
    "TopicClass",
    "TopicRouter",
    "TopicScheme",
    "topic_matches",
    "WEATHER_CODES",
    "WeatherSample",
    "WeatherSource",
    "describe_weather_code",
]
