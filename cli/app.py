from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_page, render_sensor


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Manage sensor definitions stored in the sensor config registry.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _definition_payload(
    sensor_id: str,
    sensor_type: str,
    unit: str,
    operating_min: float,
    operating_max: float,
    warning_min: float,
    warning_max: float,
    interval_ms: int,
    enabled: bool,
    simulate: bool,
) -> Dict[str, Any]:
    return {
        "sensorId": sensor_id,
        "sensorType": sensor_type,
        "unit": unit,
        "operatingMin": operating_min,
        "operatingMax": operating_max,
        "warningMin": warning_min,
        "warningMax": warning_max,
        "intervalMs": interval_ms,
        "enabled": enabled,
        "simulate": simulate,
    }


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Registry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("list")
def list_command(
    ctx: typer.Context,
    sensor_type: Optional[str] = typer.Option(None, "--type", help="Only sensors of this type."),
    enabled: Optional[bool] = typer.Option(None, "--enabled/--disabled", help="Filter on the enabled flag."),
    simulate: Optional[bool] = typer.Option(
        None, "--simulate/--no-simulate", help="Filter on the simulate flag."
    ),
    page: int = typer.Option(1, "--page", help="Page number, starting at 1."),
    page_size: int = typer.Option(50, "--page-size", help="Items per page (max 500)."),
) -> None:
    """List sensor definitions ordered by sensorId."""
    state = _get_state(ctx)
    payload = state.client.list_sensors(
        {
            "sensorType": sensor_type,
            "enabled": enabled,
            "simulate": simulate,
            "page": page,
            "pageSize": page_size,
        }
    )
    render_page(payload)


@app.command("get")
def get_command(
    ctx: typer.Context,
    identifier: str = typer.Argument(..., help="Generated id, or sensorId with --by-sensor-id."),
    by_sensor_id: bool = typer.Option(False, "--by-sensor-id", help="Treat IDENTIFIER as a sensorId."),
) -> None:
    """Show one sensor definition."""
    state = _get_state(ctx)
    render_sensor(state.client.get_sensor(identifier, by_sensor_id=by_sensor_id))


@app.command("create")
def create_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Logical sensor identifier, e.g. temp-1."),
    sensor_type: str = typer.Option(..., "--type", help="Sensor type, e.g. temperature."),
    unit: str = typer.Option(..., "--unit", help="Measurement unit, e.g. bar."),
    operating_min: float = typer.Option(0.0, "--operating-min"),
    operating_max: float = typer.Option(0.0, "--operating-max"),
    warning_min: float = typer.Option(0.0, "--warning-min"),
    warning_max: float = typer.Option(0.0, "--warning-max"),
    interval_ms: int = typer.Option(0, "--interval-ms", help="Sampling period; 0 uses the server default."),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    simulate: bool = typer.Option(True, "--simulate/--no-simulate"),
) -> None:
    """Create a sensor definition."""
    state = _get_state(ctx)
    payload = _definition_payload(
        sensor_id,
        sensor_type,
        unit,
        operating_min,
        operating_max,
        warning_min,
        warning_max,
        interval_ms,
        enabled,
        simulate,
    )
    created = state.client.create_sensor(payload)
    typer.secho(f"Created sensor {created.get('sensorId')} id={created.get('id')}", fg=typer.colors.GREEN)
    render_sensor(created)


@app.command("update")
def update_command(
    ctx: typer.Context,
    identifier: str = typer.Argument(..., help="Generated id, or sensorId with --by-sensor-id."),
    sensor_type: str = typer.Option(..., "--type"),
    unit: str = typer.Option(..., "--unit"),
    operating_min: float = typer.Option(0.0, "--operating-min"),
    operating_max: float = typer.Option(0.0, "--operating-max"),
    warning_min: float = typer.Option(0.0, "--warning-min"),
    warning_max: float = typer.Option(0.0, "--warning-max"),
    interval_ms: int = typer.Option(0, "--interval-ms", help="Sampling period; 0 keeps the stored value."),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    simulate: bool = typer.Option(True, "--simulate/--no-simulate"),
    by_sensor_id: bool = typer.Option(False, "--by-sensor-id", help="Treat IDENTIFIER as a sensorId."),
) -> None:
    """Replace the mutable fields of a sensor definition."""
    state = _get_state(ctx)
    payload = _definition_payload(
        identifier if by_sensor_id else "",
        sensor_type,
        unit,
        operating_min,
        operating_max,
        warning_min,
        warning_max,
        interval_ms,
        enabled,
        simulate,
    )
    updated = state.client.update_sensor(identifier, payload, by_sensor_id=by_sensor_id)
    typer.secho(f"Updated sensor {updated.get('sensorId')}", fg=typer.colors.GREEN)
    render_sensor(updated)


@app.command("delete")
def delete_command(
    ctx: typer.Context,
    identifier: str = typer.Argument(..., help="Generated id, or sensorId with --by-sensor-id."),
    by_sensor_id: bool = typer.Option(False, "--by-sensor-id", help="Treat IDENTIFIER as a sensorId."),
) -> None:
    """Delete a sensor definition."""
    state = _get_state(ctx)
    state.client.delete_sensor(identifier, by_sensor_id=by_sensor_id)
    typer.secho(f"Deleted sensor {identifier}", fg=typer.colors.GREEN)
