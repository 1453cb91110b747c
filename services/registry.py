"""Sensor definition registry: transactional writes followed by change events."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Optional
from uuid import uuid4

from app.schemas import (
    ChangeAction,
    SensorConfigChangedEvent,
    SensorDefinitionIn,
    SensorDefinitionOut,
    SensorPage,
)
from datastore.sensor_store import SensorStore, build_default_store
from models.records import PageRequest, SensorFilter, SensorKey
from services.errors import ConflictError, NotFoundError, PublishError, ValidationError
from services.publisher import EventPublisher, build_default_publisher

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistryService:
    """Owns the CRUD contract for sensor definitions.

    Every mutation commits to the store first and only then attempts exactly
    one event publication. A failed commit publishes nothing; a failed
    publication leaves the committed mutation in place and raises
    :class:`PublishError` carrying the committed snapshot.
    """

    def __init__(
        self,
        store: SensorStore,
        publisher: EventPublisher,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self._clock = clock

    def create(
        self,
        data: SensorDefinitionIn,
        cancel: Optional[threading.Event] = None,
    ) -> SensorDefinitionOut:
        """Insert a new definition and announce it with a ``created`` event."""
        self._validate(data)
        if self.store.exists(data.sensor_id):
            raise ConflictError(f"SensorId '{data.sensor_id}' already exists")

        snapshot = SensorDefinitionOut(
            id=uuid4(),
            sensor_id=data.sensor_id,
            sensor_type=data.sensor_type,
            unit=data.unit,
            operating_min=data.operating_min,
            operating_max=data.operating_max,
            warning_min=data.warning_min,
            warning_max=data.warning_max,
            interval_ms=data.interval_ms if data.interval_ms > 0 else DEFAULT_INTERVAL_MS,
            enabled=data.enabled,
            simulate=data.simulate,
            updated_at=self._clock(),
        )
        created = self.store.insert(snapshot, cancel=cancel)
        logger.info(
            "Sensor definition created",
            extra={"sensor_id": created.sensor_id, "row_id": created.id},
        )
        self._notify(ChangeAction.created, created.sensor_id, created)
        return created

    def update(
        self,
        key: SensorKey,
        data: SensorDefinitionIn,
        cancel: Optional[threading.Event] = None,
    ) -> SensorDefinitionOut:
        """Replace every mutable field and announce it with an ``updated`` event.

        The logical sensor id is never changed, and a non-positive interval
        keeps the stored one.
        """
        now = self._clock()

        def apply(current: SensorDefinitionOut) -> SensorDefinitionOut:
            return current.model_copy(
                update={
                    "sensor_type": data.sensor_type,
                    "unit": data.unit,
                    "operating_min": data.operating_min,
                    "operating_max": data.operating_max,
                    "warning_min": data.warning_min,
                    "warning_max": data.warning_max,
                    "interval_ms": data.interval_ms if data.interval_ms > 0 else current.interval_ms,
                    "enabled": data.enabled,
                    "simulate": data.simulate,
                    "updated_at": max(now, current.updated_at),
                }
            )

        updated = self.store.update(key, apply, cancel=cancel)
        if updated is None:
            raise NotFoundError(f"Sensor {key} not found")
        logger.info(
            "Sensor definition updated",
            extra={"sensor_id": updated.sensor_id, "row_id": updated.id},
        )
        self._notify(ChangeAction.updated, updated.sensor_id, updated)
        return updated

    def delete(self, key: SensorKey, cancel: Optional[threading.Event] = None) -> None:
        """Remove a definition and announce it with a payload-free ``deleted`` event."""
        sensor_id = self.store.delete(key, cancel=cancel)
        if sensor_id is None:
            raise NotFoundError(f"Sensor {key} not found")
        logger.info("Sensor definition deleted", extra={"sensor_id": sensor_id})
        self._notify(ChangeAction.deleted, sensor_id, None)

    def get(self, key: SensorKey) -> SensorDefinitionOut:
        snapshot = self.store.find(key)
        if snapshot is None:
            raise NotFoundError(f"Sensor {key} not found")
        return snapshot

    def list(
        self,
        filters: Optional[SensorFilter] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> SensorPage:
        request = PageRequest.normalize(page, page_size)
        total, items = self.store.list(filters or SensorFilter(), request)
        return SensorPage(
            page=request.page,
            page_size=request.page_size,
            total=total,
            items=items,
        )

    def shutdown(self) -> None:
        """Release the pooled store and broker connections."""
        self.store.dispose()
        self.publisher.close()

    @staticmethod
    def _validate(data: SensorDefinitionIn) -> None:
        for field, value in (
            ("sensorId", data.sensor_id),
            ("sensorType", data.sensor_type),
            ("unit", data.unit),
        ):
            if not value or not value.strip():
                raise ValidationError(f"{field} is required")

    def _notify(
        self,
        action: ChangeAction,
        sensor_id: str,
        snapshot: Optional[SensorDefinitionOut],
    ) -> None:
        event = SensorConfigChangedEvent(
            action=action,
            sensor_id=sensor_id,
            timestamp=self._clock(),
            payload=snapshot,
        )
        try:
            self.publisher.publish(event)
        except PublishError as exc:
            exc.snapshot = snapshot
            logger.error(
                "Mutation committed but change event is unconfirmed",
                extra={"sensor_id": sensor_id, "action": action.value},
            )
            raise


@lru_cache
def build_default_registry() -> RegistryService:
    """Factory that wires the registry with the configured store and broker."""
    return RegistryService(store=build_default_store(), publisher=build_default_publisher())
