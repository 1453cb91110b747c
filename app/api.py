"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Any, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError

from app.schemas import SensorDefinitionIn, SensorDefinitionOut, SensorPage
from models.records import SensorFilter, SensorKey
from services.errors import (
    ConflictError,
    NotFoundError,
    PublishError,
    RegistryError,
    ValidationError,
)
from services.registry import RegistryService, build_default_registry

router = APIRouter()


def get_registry() -> RegistryService:
    return build_default_registry()


def _raise_http(exc: RegistryError) -> NoReturn:
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, PublishError):
        sensor = exc.snapshot.model_dump(mode="json", by_alias=True) if exc.snapshot else None
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Mutation applied but the change notification is unconfirmed.",
                "applied": True,
                "action": exc.action.value if exc.action else None,
                "sensorId": exc.sensor_id,
                "sensor": sensor,
            },
        ) from exc
    raise exc


@router.get(
    "/sensors",
    response_model=SensorPage,
    summary="List sensor definitions ordered by sensorId.",
)
def list_sensors(
    sensor_type: Optional[str] = Query(None, alias="sensorType"),
    enabled: Optional[bool] = None,
    simulate: Optional[bool] = None,
    page: int = 1,
    page_size: int = Query(50, alias="pageSize"),
    registry: RegistryService = Depends(get_registry),
) -> SensorPage:
    filters = SensorFilter(sensor_type=sensor_type, enabled=enabled, simulate=simulate)
    return registry.list(filters, page=page, page_size=page_size)


@router.get(
    "/sensors/by-sensorId/{sensor_id}",
    response_model=SensorDefinitionOut,
    summary="Fetch a sensor definition by its logical sensorId.",
)
def get_sensor_by_sensor_id(
    sensor_id: str,
    registry: RegistryService = Depends(get_registry),
) -> SensorDefinitionOut:
    try:
        return registry.get(SensorKey.by_sensor_id(sensor_id))
    except RegistryError as exc:
        _raise_http(exc)


@router.get(
    "/sensors/{sensor_uuid}",
    response_model=SensorDefinitionOut,
    summary="Fetch a sensor definition by its generated id.",
)
def get_sensor(
    sensor_uuid: str,
    registry: RegistryService = Depends(get_registry),
) -> SensorDefinitionOut:
    try:
        return registry.get(SensorKey.by_id(sensor_uuid))
    except RegistryError as exc:
        _raise_http(exc)


@router.post(
    "/sensors",
    status_code=status.HTTP_201_CREATED,
    response_model=SensorDefinitionOut,
    summary="Create a sensor definition and publish a created event.",
)
def create_sensor(
    data: SensorDefinitionIn,
    response: Response,
    registry: RegistryService = Depends(get_registry),
) -> SensorDefinitionOut:
    try:
        created = registry.create(data)
    except RegistryError as exc:
        _raise_http(exc)
    response.headers["Location"] = f"/sensors/{created.id}"
    return created


@router.put(
    "/sensors/by-sensorId/{sensor_id}",
    response_model=SensorDefinitionOut,
    summary="Update a sensor definition addressed by sensorId.",
)
def update_sensor_by_sensor_id(
    sensor_id: str,
    data: SensorDefinitionIn,
    registry: RegistryService = Depends(get_registry),
) -> SensorDefinitionOut:
    try:
        return registry.update(SensorKey.by_sensor_id(sensor_id), data)
    except RegistryError as exc:
        _raise_http(exc)


@router.put(
    "/sensors/{sensor_uuid}",
    response_model=SensorDefinitionOut,
    summary="Update a sensor definition addressed by its generated id.",
)
def update_sensor(
    sensor_uuid: str,
    data: SensorDefinitionIn,
    registry: RegistryService = Depends(get_registry),
) -> SensorDefinitionOut:
    try:
        return registry.update(SensorKey.by_id(sensor_uuid), data)
    except RegistryError as exc:
        _raise_http(exc)


@router.delete(
    "/sensors/by-sensorId/{sensor_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a sensor definition addressed by sensorId.",
)
def delete_sensor_by_sensor_id(
    sensor_id: str,
    registry: RegistryService = Depends(get_registry),
) -> Response:
    try:
        registry.delete(SensorKey.by_sensor_id(sensor_id))
    except RegistryError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/sensors/{sensor_uuid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a sensor definition addressed by its generated id.",
)
def delete_sensor(
    sensor_uuid: str,
    registry: RegistryService = Depends(get_registry),
) -> Response:
    try:
        registry.delete(SensorKey.by_id(sensor_uuid))
    except RegistryError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/health/live",
    summary="Liveness probe.",
    status_code=status.HTTP_200_OK,
)
async def liveness() -> dict[str, str]:
    return {"status": "live"}


@router.get(
    "/health/ready",
    summary="Readiness probe backed by a store round trip.",
    status_code=status.HTTP_200_OK,
)
def readiness(
    response: Response,
    registry: RegistryService = Depends(get_registry),
) -> dict[str, Any]:
    try:
        registry.store.ping()
    except SQLAlchemyError as exc:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable", "detail": str(exc)}
    return {"status": "ready", "broker": registry.publisher.log.is_connected()}


@router.get(
    "/",
    summary="Service banner.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"service": "sensor-config-registry", "status": "ok"}
