from __future__ import annotations

from typing import Any, Dict, NoReturn, Optional
from urllib.parse import quote

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the registry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def list_sensors(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = {key: value for key, value in params.items() if value is not None}
        return self._request("GET", "/sensors", params=query).json()

    def get_sensor(self, identifier: str, by_sensor_id: bool = False) -> Dict[str, Any]:
        return self._request("GET", self._sensor_path(identifier, by_sensor_id)).json()

    def create_sensor(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/sensors", json=payload).json()

    def update_sensor(
        self, identifier: str, payload: Dict[str, Any], by_sensor_id: bool = False
    ) -> Dict[str, Any]:
        path = self._sensor_path(identifier, by_sensor_id)
        return self._request("PUT", path, json=payload).json()

    def delete_sensor(self, identifier: str, by_sensor_id: bool = False) -> None:
        self._request("DELETE", self._sensor_path(identifier, by_sensor_id))

    @staticmethod
    def _sensor_path(identifier: str, by_sensor_id: bool) -> str:
        if by_sensor_id:
            return f"/sensors/by-sensorId/{quote(identifier, safe='')}"
        return f"/sensors/{quote(identifier, safe='')}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, params=params, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1) from exc
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> NoReturn:
        detail: Any = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        if isinstance(detail, dict):
            detail = detail.get("message") or detail
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
