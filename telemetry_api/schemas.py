"""Request bodies for the REST API (camelCase on the wire)."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.reading import ReadingQuality, SensorType


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LocationIn(_Body):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    name: str = Field(..., min_length=1, max_length=200)
    altitude: float = 0.0


class SensorCreate(_Body):
    sensor_id: str = Field(..., alias="sensorId", min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    type: SensorType
    location: LocationIn
    configuration: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("sensor_id", "name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class SensorUpdate(_Body):
    """Partial update; ``sensorId`` is accepted only to reject a change."""

    sensor_id: Optional[str] = Field(default=None, alias="sensorId")
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[SensorType] = None
    location: Optional[LocationIn] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    configuration: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    def changes(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "type":
                value = value.value
            elif name == "location":
                value = value.model_dump()
            out[name] = value
        return out


class ReadingSubmit(_Body):
    sensor_id: str = Field(..., alias="sensorId", min_length=1, max_length=50)
    data: Dict[str, Any]
    quality: ReadingQuality = ReadingQuality.GOOD
    raw_value: Optional[str] = Field(default=None, alias="rawValue")


class SimulateRequest(_Body):
    sensor_id: Optional[str] = Field(default=None, alias="sensorId")
