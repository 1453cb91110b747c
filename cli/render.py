from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

_SENSOR_FIELDS = (
    "id",
    "sensorId",
    "sensorType",
    "unit",
    "operatingMin",
    "operatingMax",
    "warningMin",
    "warningMax",
    "intervalMs",
    "enabled",
    "simulate",
    "updatedAt",
)


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_sensor(payload: Dict[str, Any]) -> None:
    echo_heading(f"Sensor {payload.get('sensorId')}")
    echo_key_values((field, payload.get(field)) for field in _SENSOR_FIELDS)


def render_page(payload: Dict[str, Any]) -> None:
    items = payload.get("items") or []
    echo_heading(
        f"Sensors (page {payload.get('page')}, size {payload.get('pageSize')}, total {payload.get('total')})"
    )
    if not items:
        typer.echo("No sensors found.")
        return
    for item in items:
        flags = []
        if item.get("enabled"):
            flags.append("enabled")
        if item.get("simulate"):
            flags.append("simulate")
        typer.echo(
            f"  - {item.get('sensorId')} [{item.get('sensorType')}, {item.get('unit')}] "
            f"range={item.get('operatingMin')}..{item.get('operatingMax')} "
            f"interval={item.get('intervalMs')}ms {' '.join(flags)}".rstrip()
        )
