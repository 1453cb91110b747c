"""Pydantic schemas for the HTTP API layer and the change-event wire format."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exposing camelCase names on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChangeAction(str, Enum):
    """Kinds of registry mutation announced to downstream consumers."""

    created = "created"
    updated = "updated"
    deleted = "deleted"


class SensorDefinitionIn(CamelModel):
    """Request body for create and update.

    ``sensor_id`` is ignored on update; the stored logical key never changes.
    """

    sensor_id: str = ""
    sensor_type: str = ""
    unit: str = ""
    operating_min: float = 0.0
    operating_max: float = 0.0
    warning_min: float = 0.0
    warning_max: float = 0.0
    interval_ms: int = Field(
        default=0, description="Sampling period; non-positive values are coerced."
    )
    enabled: bool = True
    simulate: bool = True

    @field_validator("sensor_id", "sensor_type", "unit", mode="before")
    @classmethod
    def null_as_blank(cls, value: Optional[str]) -> str:
        return "" if value is None else value


class SensorDefinitionOut(CamelModel):
    """Snapshot of a stored sensor definition."""

    id: UUID
    sensor_id: str
    sensor_type: str
    unit: str
    operating_min: float
    operating_max: float
    warning_min: float
    warning_max: float
    interval_ms: int
    enabled: bool
    simulate: bool
    updated_at: datetime


class SensorPage(CamelModel):
    """One page of definitions plus the count of all matching rows."""

    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    items: List[SensorDefinitionOut] = Field(default_factory=list)


class SensorConfigChangedEvent(CamelModel):
    """Change notification published after a committed mutation."""

    action: ChangeAction
    sensor_id: str
    timestamp: datetime
    payload: Optional[SensorDefinitionOut] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
