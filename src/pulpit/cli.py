"""Command-line interface for the Pulpit gateway.

Example:
    >>> # From terminal:
    >>> # pulpit version
    >>> # pulpit serve --port 26547 --devices devices.json
    >>> # pulpit show-config
"""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
import uvicorn

from pulpit import __version__
from pulpit.config import PulpitSettings, load_devices
from pulpit.observability.logging import configure_logging, sanitize_for_logging

app = typer.Typer(help="Pulpit device gateway.")


def _settings(
    host: Optional[str],
    port: Optional[int],
    devices: Optional[Path],
) -> PulpitSettings:
    try:
        settings = PulpitSettings.from_env()
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    overrides: dict[str, object] = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if devices is not None:
        if not devices.exists():
            raise typer.BadParameter(f"Devices file not found: {devices}")
        overrides["devices_file"] = devices
    return settings.model_copy(update=overrides) if overrides else settings


@app.command("version")
def version() -> None:
    """Print the Pulpit version."""
    typer.echo(__version__)


@app.command("serve")
def serve(
    host: Annotated[
        Optional[str], typer.Option("--host", help="Bind address (default: PULPIT_HOST).")
    ] = None,
    port: Annotated[
        Optional[int], typer.Option("--port", "-p", help="Port (default: PULPIT_PORT).")
    ] = None,
    devices: Annotated[
        Optional[Path],
        typer.Option("--devices", help="JSON file of registered devices."),
    ] = None,
    log_level: Annotated[
        str, typer.Option("--log-level", help="Log level for the gateway and uvicorn.")
    ] = "info",
) -> None:
    """Run the gateway HTTP and WebSocket server."""
    from pulpit.transport.server import create_app

    settings = _settings(host, port, devices)
    configure_logging(log_level=log_level.upper(), force=True)
    try:
        fastapi_app = create_app(settings)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Cannot start gateway: {exc}") from exc
    uvicorn.run(fastapi_app, host=settings.host, port=settings.port, log_level=log_level.lower())


@app.command("show-config")
def show_config(
    devices: Annotated[
        Optional[Path],
        typer.Option("--devices", help="Also validate this devices file."),
    ] = None,
) -> None:
    """Print the effective configuration (secrets redacted)."""
    settings = _settings(None, None, devices)
    data = sanitize_for_logging(settings.model_dump(mode="json"))
    if settings.devices_file is not None:
        try:
            data["device_count"] = len(load_devices(settings.devices_file))
        except (OSError, ValueError) as exc:
            raise typer.BadParameter(f"Invalid devices file: {exc}") from exc
    typer.echo(json.dumps(data, indent=2))


def main() -> None:
    """Run the Pulpit CLI."""
    app()


if __name__ == "__main__":
    main()
