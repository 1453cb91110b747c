"""Error taxonomy for the sensor registry."""

from __future__ import annotations

from typing import Optional

from app.schemas import ChangeAction, SensorDefinitionOut


class RegistryError(Exception):
    """Base class for registry failures."""


class ValidationError(RegistryError):
    """A required field is missing or blank; nothing was written."""


class NotFoundError(RegistryError, KeyError):
    """No definition matches the given key."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class ConflictError(RegistryError):
    """The logical sensor id is already taken; nothing was written."""


class StoreUnavailableError(RegistryError):
    """The definition store could not be reached during startup."""


class OperationCancelledError(RegistryError):
    """The caller cancelled the operation before its transaction committed."""


class PublishError(RegistryError):
    """The change event could not be handed to the broker.

    When raised by the registry the mutation has already been committed:
    ``snapshot`` holds the committed state (``None`` for deletions).
    """

    def __init__(
        self,
        message: str,
        *,
        sensor_id: Optional[str] = None,
        action: Optional[ChangeAction] = None,
        snapshot: Optional[SensorDefinitionOut] = None,
    ) -> None:
        super().__init__(message)
        self.sensor_id = sensor_id
        self.action = action
        self.snapshot = snapshot
