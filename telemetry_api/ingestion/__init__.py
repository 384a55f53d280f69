"""Ingestion and normalization of bus messages and REST submissions."""

from .anomaly import AnomalyPolicy, never_anomalous
from .normalizer import normalize_reading, normalize_status, normalize_weather
from .service import IngestionService, IngestionStats, OrphanPolicy

__all__ = [
    "AnomalyPolicy",
    "never_anomalous",
    "normalize_reading",
    "normalize_status",
    "normalize_weather",
    "IngestionService",
    "IngestionStats",
    "OrphanPolicy",
]
