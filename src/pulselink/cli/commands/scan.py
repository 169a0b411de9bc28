import threading
from typing import Annotated, Optional

import typer

from pulselink.peripheral.heart_rate.adapter import PeripheralDiscovered
from pulselink.peripheral.heart_rate.errors import PulseLinkError
from pulselink.peripheral.heart_rate.factory import build_adapter
from pulselink.peripheral.heart_rate.gatt import HEART_RATE_SERVICE_UUID
from pulselink.utilities.env import BleAdapterBackend, Configuration
from pulselink.utilities.logging import get_logger

logger = get_logger(__name__)


def scan_command(
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", min=0.1, help="Seconds to listen for advertisements"),
    ] = None,
    simulate: bool = typer.Option(False, "--simulate", help="Use the simulated adapter"),
) -> None:
    """List nearby peripherals advertising the Heart Rate service."""

    backend = BleAdapterBackend.SIMULATED if simulate else Configuration.ble_adapter_backend()
    adapter = build_adapter(backend)
    seconds = timeout if timeout is not None else Configuration.scan_timeout_seconds()

    try:
        adapter.initialize()
    except PulseLinkError as error:
        typer.echo(f"Bluetooth error: {error.detail}", err=True)
        raise typer.Exit(code=1) from error

    seen: dict[str, str] = {}
    failure: list[Exception] = []
    done = threading.Event()

    def on_discovered(event: PeripheralDiscovered) -> None:
        if event.address in seen:
            return
        seen[event.address] = event.name
        typer.echo(f"{event.address}  {event.name or '(unnamed)'}")

    def on_error(error: Exception) -> None:
        failure.append(error)
        done.set()

    subscription = adapter.scan_for_peripherals([HEART_RATE_SERVICE_UUID]).subscribe(
        on_next=on_discovered,
        on_error=on_error,
        scheduler=adapter.scheduler,
    )
    try:
        done.wait(timeout=seconds)
    finally:
        subscription.dispose()
        adapter.deinitialize()

    if failure:
        logger.error("Scan failed: %s", failure[0])
        raise typer.Exit(code=1)
    typer.echo(f"{len(seen)} device(s) found")
