"""Domain value objects shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


class KeyKind(str, Enum):
    row_id = "id"
    sensor_id = "sensorId"


@dataclass(frozen=True, slots=True)
class SensorKey:
    """Lookup key: either the generated row id or the logical sensor id."""

    kind: KeyKind
    value: str

    @classmethod
    def by_id(cls, row_id: UUID | str) -> "SensorKey":
        return cls(kind=KeyKind.row_id, value=str(row_id))

    @classmethod
    def by_sensor_id(cls, sensor_id: str) -> "SensorKey":
        return cls(kind=KeyKind.sensor_id, value=sensor_id)

    def __str__(self) -> str:
        return f"{self.kind.value}={self.value}"


@dataclass(frozen=True, slots=True)
class SensorFilter:
    """Optional equality filters applied when listing definitions."""

    sensor_type: Optional[str] = None
    enabled: Optional[bool] = None
    simulate: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int
    page_size: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @classmethod
    def normalize(
        cls, page: Optional[int] = None, page_size: Optional[int] = None
    ) -> "PageRequest":
        page_number = page if page is not None and page > 0 else 1
        if page_size is None or page_size <= 0:
            size = DEFAULT_PAGE_SIZE
        else:
            size = min(page_size, MAX_PAGE_SIZE)
        return cls(page=page_number, page_size=size)
