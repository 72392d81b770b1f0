"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from aromactl.core.errors import AromactlError
from aromactl.core.service import AromaService

app = typer.Typer(help="Scan, connect to, and configure aromatizador scent diffusers over BLE")


def _build_service() -> AromaService:
    service = AromaService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log session activity to stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("profiles")
def list_profiles() -> None:
    """List device profiles and their GATT identifiers."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  service: {profile.gatt.service_uuid}")
            typer.echo(f"  config:  {profile.gatt.config_char_uuid}")
            if profile.gatt.status_char_uuid:
                typer.echo(f"  status:  {profile.gatt.status_char_uuid}")
    except AromactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    window: float | None = typer.Option(None, "--window", help="Scan window in seconds"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
) -> None:
    """List nearby devices matching the profile's filter."""
    try:
        service = _build_service()
        devices = service.scan(profile_id=profile, window=window)
        if not devices:
            typer.echo("No matching devices found")
            return

        for device in devices:
            rssi = f"{device.rssi} dBm" if device.rssi is not None else "n/a"
            typer.echo(f"{device.identifier} {device.name} ({rssi})")
    except AromactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("send")
def send(
    intensity: int,
    interval: int,
    device: str | None = typer.Option(None, "--device", help="Address or partial name"),
    profile: str | None = typer.Option(None, "--profile", help="Profile ID"),
) -> None:
    """Send INTENSITY (0-100 %) and INTERVAL (5-120 minutes) to a diffuser."""
    try:
        service = _build_service()
        result = service.send_config(intensity, interval, profile_id=profile, device_hint=device)
        typer.echo(
            f"Sent intensity={result.payload.intensity} interval={result.payload.interval} "
            f"to {result.device.identifier} ({result.device.name}) payload={result.payload_hex}"
        )
        noun = "attempt" if result.attempts == 1 else "attempts"
        typer.echo(f"Acknowledged after {result.attempts} {noun}")
    except AromactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("encode")
def encode(intensity: int, interval: int) -> None:
    """Print the wire bytes for a configuration without touching the radio."""
    try:
        service = _build_service()
        typer.echo(service.encode(intensity, interval).hex())
    except AromactlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
