"""Anomaly policy hook.

A policy is any callable ``(sensor_id, data) -> bool``. The result is stored
as ``is_anomaly`` on the reading; no detection ships by default.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping

AnomalyPolicy = Callable[[str, Mapping[str, Any]], bool]


def never_anomalous(sensor_id: str, data: Mapping[str, Any]) -> bool:
    return False
