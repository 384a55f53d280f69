"""MQTT topic naming scheme and wildcard matching.

Topics are '/'-delimited. Patterns accept ``+`` (exactly one level) and
``#`` (any number of trailing levels, only as the last level).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")

ROOM_ALL = "all-updates"
ROOM_WEATHER = "weather"


def sensor_room(sensor_id: str) -> str:
    return f"sensor:{sensor_id}"


class TopicClass(str, Enum):
    SENSOR_DATA = "sensor_data"
    SENSOR_STATUS = "sensor_status"
    WEATHER_UPDATE = "weather_update"
    SYSTEM_ALERTS = "system_alerts"
    SYSTEM_STATUS = "system_status"


@dataclass(frozen=True)
class TopicScheme:
    root: str = "csir"

    @property
    def sensor_data(self) -> str:
        return f"{self.root}/sensors/+/data"

    @property
    def sensor_status(self) -> str:
        return f"{self.root}/sensors/+/status"

    @property
    def weather_update(self) -> str:
        return f"{self.root}/weather/update"

    @property
    def system_alerts(self) -> str:
        return f"{self.root}/system/alerts"

    @property
    def system_status(self) -> str:
        return f"{self.root}/system/status"

    def patterns(self) -> dict[TopicClass, str]:
        return {
            TopicClass.SENSOR_DATA: self.sensor_data,
            TopicClass.SENSOR_STATUS: self.sensor_status,
            TopicClass.WEATHER_UPDATE: self.weather_update,
            TopicClass.SYSTEM_ALERTS: self.system_alerts,
            TopicClass.SYSTEM_STATUS: self.system_status,
        }

    def sensor_data_topic(self, sensor_id: str) -> str:
        return f"{self.root}/sensors/{sensor_id}/data"

    def sensor_status_topic(self, sensor_id: str) -> str:
        return f"{self.root}/sensors/{sensor_id}/status"

    def sensor_id_from_topic(self, topic: str) -> Optional[str]:
        """``{root}/sensors/{id}/...`` -> ``id``; None for other topics."""
        root_levels = self.root.split("/")
        levels = topic.split("/")
        n = len(root_levels)
        if levels[:n] != root_levels or len(levels) < n + 3:
            return None
        if levels[n] != "sensors" or not levels[n + 1]:
            return None
        return levels[n + 1]


def validate_pattern(pattern: str) -> None:
    levels = pattern.split("/")
    for i, level in enumerate(levels):
        if level == "#" and i != len(levels) - 1:
            raise ValueError(f"'#' must be the last level: {pattern}")
        if level not in ("+", "#") and ("+" in level or "#" in level):
            raise ValueError(f"Wildcards must occupy a whole level: {pattern}")


def topic_matches(pattern: str, topic: str) -> bool:
    p_levels = pattern.split("/")
    t_levels = topic.split("/")
    for i, p in enumerate(p_levels):
        if p == "#":
            return True
        if i >= len(t_levels):
            return False
        if p != "+" and p != t_levels[i]:
            return False
    return len(p_levels) == len(t_levels)


def specificity(pattern: str) -> Tuple[int, int, int]:
    """Sort key, larger is more specific.

    More literal levels first, then fewer ``#``, then fewer ``+``.
    """
    levels = pattern.split("/")
    literal = sum(1 for lvl in levels if lvl not in ("+", "#"))
    multi = sum(1 for lvl in levels if lvl == "#")
    single = sum(1 for lvl in levels if lvl == "+")
    return (literal, -multi, -single)


class TopicRouter(Generic[T]):
    """Maps topic patterns to targets; resolves to the most specific match."""

    def __init__(self) -> None:
        self._routes: List[Tuple[str, T]] = []

    def register(self, pattern: str, target: T) -> None:
        validate_pattern(pattern)
        self._routes = [(p, t) for p, t in self._routes if p != pattern]
        self._routes.append((pattern, target))

    def resolve(self, topic: str) -> Optional[T]:
        best: Optional[Tuple[str, T]] = None
        for pattern, target in self._routes:
            if not topic_matches(pattern, topic):
                continue
            if best is None or specificity(pattern) > specificity(best[0]):
                best = (pattern, target)
        return best[1] if best else None

    @property
    def patterns(self) -> List[str]:
        return [p for p, _ in self._routes]
