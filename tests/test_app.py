import json
import uuid
from datetime import datetime
from typing import Iterator

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from app.main import create_app
from datastore.sensor_store import SensorStore
from messaging.event_log import EventLog, InMemoryEventLog
from services.publisher import EventPublisher
from services.errors import StoreUnavailableError
from services.registry import RegistryService
from settings import get_settings

TOPIC = "sensor-config-events"


class UnreachableLog(EventLog):
    def append(self, topic: str, key: str, value: str) -> str:
        raise redis.ConnectionError("broker unreachable")

    def is_connected(self) -> bool:
        return False


def _install_registry(monkeypatch, registry: RegistryService) -> None:
    def build_test_registry() -> RegistryService:
        return registry

    build_test_registry.cache_clear = lambda: None  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_registry", build_test_registry)
    monkeypatch.setattr("app.api.build_default_registry", build_test_registry)


@pytest.fixture
def settings_env(monkeypatch) -> Iterator[None]:
    monkeypatch.setenv("SENSOR_SEED_DEFAULTS", "false")
    monkeypatch.setenv("SENSOR_STORE_READY_BACKOFF_SECONDS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _build_registry(tmp_path, log: EventLog) -> RegistryService:
    engine = create_engine(f"sqlite:///{tmp_path / 'sensors.db'}", future=True)
    return RegistryService(SensorStore(engine), EventPublisher(log=log, topic=TOPIC))


@pytest.fixture
def event_log() -> InMemoryEventLog:
    return InMemoryEventLog()


@pytest.fixture
def api_client(tmp_path, monkeypatch, settings_env, event_log) -> Iterator[TestClient]:
    _install_registry(monkeypatch, _build_registry(tmp_path, event_log))
    app = create_app()
    with TestClient(app) as client:
        yield client


def _body(sensor_id: str = "temp-9", **overrides) -> dict:
    body = {
        "sensorId": sensor_id,
        "sensorType": "temperature",
        "unit": "C",
        "operatingMin": 0,
        "operatingMax": 100,
        "warningMin": 10,
        "warningMax": 90,
        "intervalMs": 0,
        "enabled": True,
        "simulate": True,
    }
    body.update(overrides)
    return body


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _actions(log: InMemoryEventLog, key: str) -> list[str]:
    return [json.loads(entry.value)["action"] for entry in log.entries(TOPIC, key)]


def test_create_returns_created_with_location(api_client: TestClient) -> None:
    response = api_client.post("/sensors", json=_body())

    assert response.status_code == 201
    payload = response.json()
    assert payload["sensorId"] == "temp-9"
    assert payload["intervalMs"] == 1000
    assert uuid.UUID(payload["id"])
    assert response.headers["location"] == f"/sensors/{payload['id']}"
    assert "updatedAt" in payload


def test_create_validation_and_conflict(api_client: TestClient, event_log: InMemoryEventLog) -> None:
    missing = api_client.post("/sensors", json=_body(sensorId=""))
    assert missing.status_code == 400
    assert missing.json()["detail"] == "sensorId is required"

    no_unit = api_client.post("/sensors", json=_body(unit=" "))
    assert no_unit.status_code == 400
    assert no_unit.json()["detail"] == "unit is required"

    assert api_client.post("/sensors", json=_body()).status_code == 201
    duplicate = api_client.post("/sensors", json=_body())
    assert duplicate.status_code == 409
    assert "temp-9" in duplicate.json()["detail"]

    assert _actions(event_log, "temp-9") == ["created"]


def test_get_by_id_and_sensor_id(api_client: TestClient) -> None:
    created = api_client.post("/sensors", json=_body()).json()

    by_id = api_client.get(f"/sensors/{created['id']}")
    by_sensor_id = api_client.get("/sensors/by-sensorId/temp-9")

    assert by_id.status_code == 200
    assert by_id.json() == created
    assert by_sensor_id.json() == created
    assert api_client.get(f"/sensors/{uuid.uuid4()}").status_code == 404
    assert api_client.get("/sensors/by-sensorId/unknown").status_code == 404


def test_update_keeps_sensor_id_and_interval(api_client: TestClient) -> None:
    created = api_client.post("/sensors", json=_body(intervalMs=2500)).json()

    response = api_client.put(
        f"/sensors/{created['id']}",
        json=_body("renamed", unit="K", intervalMs=-1, enabled=False),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["sensorId"] == "temp-9"
    assert payload["unit"] == "K"
    assert payload["intervalMs"] == 2500
    assert payload["enabled"] is False
    assert _parse_ts(payload["updatedAt"]) >= _parse_ts(created["updatedAt"])

    by_key = api_client.put("/sensors/by-sensorId/temp-9", json=_body(intervalMs=300))
    assert by_key.status_code == 200
    assert by_key.json()["intervalMs"] == 300

    assert api_client.put(f"/sensors/{uuid.uuid4()}", json=_body()).status_code == 404
    assert api_client.put("/sensors/by-sensorId/ghost", json=_body()).status_code == 404


def test_delete_by_id_and_by_sensor_id(api_client: TestClient, event_log: InMemoryEventLog) -> None:
    first = api_client.post("/sensors", json=_body("a")).json()
    api_client.post("/sensors", json=_body("b"))

    assert api_client.delete(f"/sensors/{first['id']}").status_code == 204
    assert api_client.delete(f"/sensors/{first['id']}").status_code == 404
    assert api_client.delete("/sensors/by-sensorId/b").status_code == 204
    assert api_client.delete("/sensors/by-sensorId/b").status_code == 404

    assert _actions(event_log, "a") == ["created", "deleted"]
    assert _actions(event_log, "b") == ["created", "deleted"]


def test_list_paging_and_filters(api_client: TestClient) -> None:
    api_client.post("/sensors", json=_body("c", sensorType="pressure"))
    api_client.post("/sensors", json=_body("a", enabled=False))
    api_client.post("/sensors", json=_body("b", simulate=False))

    everything = api_client.get("/sensors", params={"page": 0, "pageSize": 0}).json()
    assert everything["page"] == 1
    assert everything["pageSize"] == 50
    assert everything["total"] == 3
    assert [item["sensorId"] for item in everything["items"]] == ["a", "b", "c"]

    capped = api_client.get("/sensors", params={"pageSize": 10000}).json()
    assert capped["pageSize"] == 500

    second_page = api_client.get("/sensors", params={"page": 2, "pageSize": 2}).json()
    assert second_page["total"] == 3
    assert [item["sensorId"] for item in second_page["items"]] == ["c"]

    pressure = api_client.get("/sensors", params={"sensorType": "pressure"}).json()
    assert [item["sensorId"] for item in pressure["items"]] == ["c"]
    disabled = api_client.get("/sensors", params={"enabled": "false"}).json()
    assert [item["sensorId"] for item in disabled["items"]] == ["a"]
    simulated = api_client.get("/sensors", params={"simulate": "true"}).json()
    assert simulated["total"] == 2


def test_end_to_end_temp_9_lifecycle(api_client: TestClient, event_log: InMemoryEventLog) -> None:
    created = api_client.post(
        "/sensors", json=_body("temp-9", operatingMin=0, operatingMax=100, intervalMs=0)
    )
    assert created.json()["intervalMs"] == 1000

    updated = api_client.put("/sensors/by-sensorId/temp-9", json=_body("temp-9", intervalMs=-5))
    assert updated.json()["intervalMs"] == 1000

    assert api_client.delete("/sensors/by-sensorId/temp-9").status_code == 204
    assert api_client.get("/sensors/by-sensorId/temp-9").status_code == 404

    assert _actions(event_log, "temp-9") == ["created", "updated", "deleted"]


def test_publish_failure_reports_applied_mutation(tmp_path, monkeypatch, settings_env) -> None:
    registry = _build_registry(tmp_path, UnreachableLog())
    _install_registry(monkeypatch, registry)

    with TestClient(create_app()) as client:
        response = client.post("/sensors", json=_body())
        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["applied"] is True
        assert detail["action"] == "created"
        assert detail["sensor"]["sensorId"] == "temp-9"

        assert client.get("/sensors/by-sensorId/temp-9").status_code == 200


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/").json() == {"service": "sensor-config-registry", "status": "ok"}
    assert api_client.get("/health/live").json() == {"status": "live"}

    ready = api_client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json() == {"status": "ready", "broker": True}


def test_startup_seeds_default_sensors(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SENSOR_SEED_DEFAULTS", "true")
    get_settings.cache_clear()
    log = InMemoryEventLog()
    _install_registry(monkeypatch, _build_registry(tmp_path, log))

    try:
        with TestClient(create_app()) as client:
            listing = client.get("/sensors").json()
    finally:
        get_settings.cache_clear()

    assert [item["sensorId"] for item in listing["items"]] == ["pressure-1", "temp-1"]
    assert log.entries(TOPIC) == []


def _unreachable_registry(tmp_path, log: EventLog) -> RegistryService:
    missing_dir = tmp_path / "does-not-exist" / "sensors.db"
    engine = create_engine(f"sqlite:///{missing_dir}", future=True)
    return RegistryService(SensorStore(engine), EventPublisher(log=log, topic=TOPIC))


def test_startup_fails_fast_when_store_never_ready(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SENSOR_STORE_READY_ATTEMPTS", "2")
    monkeypatch.setenv("SENSOR_STORE_READY_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("SENSOR_STORE_READY_FAIL_FAST", "true")
    get_settings.cache_clear()
    _install_registry(monkeypatch, _unreachable_registry(tmp_path, InMemoryEventLog()))

    try:
        with pytest.raises(StoreUnavailableError):
            with TestClient(create_app()):
                pass
    finally:
        get_settings.cache_clear()


def test_degraded_start_serves_and_reports_not_ready(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SENSOR_STORE_READY_ATTEMPTS", "2")
    monkeypatch.setenv("SENSOR_STORE_READY_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("SENSOR_STORE_READY_FAIL_FAST", "false")
    monkeypatch.setenv("SENSOR_SEED_DEFAULTS", "true")
    get_settings.cache_clear()
    log = InMemoryEventLog()
    registry = _unreachable_registry(tmp_path, log)
    seeded: list[int] = []
    monkeypatch.setattr(registry.store, "seed_defaults", lambda: seeded.append(1) or 0)
    _install_registry(monkeypatch, registry)

    try:
        with TestClient(create_app()) as client:
            assert client.get("/health/live").status_code == 200
            ready = client.get("/health/ready")
    finally:
        get_settings.cache_clear()

    assert ready.status_code == 503
    assert ready.json()["status"] == "unavailable"
    assert seeded == []
    assert log.entries(TOPIC) == []


def test_malformed_id_path_is_not_found(api_client: TestClient) -> None:
    assert api_client.get("/sensors/not-a-guid").status_code == 404
    assert api_client.put("/sensors/not-a-guid", json=_body()).status_code == 404
    assert api_client.delete("/sensors/not-a-guid").status_code == 404


@pytest.mark.parametrize("field", ["sensorId", "sensorType", "unit"])
def test_null_required_field_is_a_validation_error(
    api_client: TestClient, event_log: InMemoryEventLog, field: str
) -> None:
    response = api_client.post("/sensors", json=_body(**{field: None}))

    assert response.status_code == 400
    assert response.json()["detail"] == f"{field} is required"
    assert event_log.entries(TOPIC) == []


def test_long_free_form_fields_are_accepted(api_client: TestClient) -> None:
    long_id = "sensor-" + "x" * 300
    response = api_client.post("/sensors", json=_body(long_id, unit="u" * 40))

    assert response.status_code == 201
    assert api_client.get(f"/sensors/by-sensorId/{long_id}").json()["unit"] == "u" * 40
