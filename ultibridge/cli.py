"""Typer CLI entrypoint."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path

import typer
import yaml

from ultibridge.api import Client, battery_state_payload, cell_state_payload
from ultibridge.core.commands import COMMANDS
from ultibridge.core.config import load_config
from ultibridge.core.errors import UltibridgeError

app = typer.Typer(help="Bridge an Ultimatron-style BLE battery to MQTT")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to a YAML config file")


class Toggle(str, Enum):
    on = "on"
    off = "off"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_client(config_path: Path | None) -> Client:
    loaded = load_config(config_path)
    return Client(config=loaded.config)


@app.command("run")
def run_bridge(config: Path | None = ConfigOption) -> None:
    """Connect to the battery and publish telemetry until interrupted."""
    try:
        client = _build_client(config)
        client.run_bridge()
    except KeyboardInterrupt:
        typer.echo("Stopped", err=True)
    except UltibridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("read")
def read_state(
    config: Path | None = ConfigOption,
    timeout: float = typer.Option(30.0, "--timeout", help="Seconds to wait for the battery"),
) -> None:
    """Print one battery state and cell state reading as JSON."""
    try:
        client = _build_client(config)
        snapshot = client.read_snapshot(timeout_s=timeout)
        typer.echo(
            json.dumps(
                {
                    "batterystate": battery_state_payload(snapshot.battery_state),
                    "cellstate": cell_state_payload(snapshot.cell_state),
                },
                indent=2,
            )
        )
    except UltibridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("charge")
def set_charge(state: Toggle, config: Path | None = ConfigOption) -> None:
    """Switch the charge MOSFET on or off."""
    try:
        client = _build_client(config)
        payload = client.set_charge(state is Toggle.on)
        typer.echo(f"Sent charge={state.value} payload={payload.hex()}")
    except UltibridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("discharge")
def set_discharge(state: Toggle, config: Path | None = ConfigOption) -> None:
    """Switch the discharge MOSFET on or off."""
    try:
        client = _build_client(config)
        payload = client.set_discharge(state is Toggle.on)
        typer.echo(f"Sent discharge={state.value} payload={payload.hex()}")
    except UltibridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("commands")
def list_commands() -> None:
    """List the command table."""
    for name, payload in COMMANDS.items():
        typer.echo(f"{name.value}: {payload.hex(' ')}")


@app.command("config")
def show_config(config: Path | None = ConfigOption) -> None:
    """Print the effective configuration and where it came from."""
    try:
        loaded = load_config(config)
    except UltibridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    typer.echo(f"# sources: {', '.join(loaded.sources)}")
    typer.echo(yaml.safe_dump(loaded.document, sort_keys=False).rstrip())


def run() -> None:
    app()


if __name__ == "__main__":
    run()
