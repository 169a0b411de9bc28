import threading
from typing import Annotated, Optional

import typer
from reactivex import operators as ops

from pulselink.peripheral.core import PeripheralMessageEnvelope
from pulselink.peripheral.heart_rate.errors import ErrorKind
from pulselink.peripheral.heart_rate.factory import build_adapter
from pulselink.peripheral.heart_rate.gatt import name_contains
from pulselink.peripheral.heart_rate.manager import ConnectionManager
from pulselink.peripheral.heart_rate.monitor import (TERMINAL_ERRORS,
                                                     PolarHeartRateMonitor)
from pulselink.peripheral.heart_rate.session import (DeviceFound,
                                                     Disconnected, Error,
                                                     Measurement,
                                                     SessionEvent,
                                                     StatusChanged,
                                                     ZoneChanged,
                                                     format_heart_rate)
from pulselink.utilities.env import BleAdapterBackend, Configuration
from pulselink.utilities.logging import get_logger

logger = get_logger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 10.0


def describe_event(event: SessionEvent) -> str:
    match event:
        case StatusChanged():
            return event.status
        case DeviceFound():
            return f"Found: {event.device.name} ({event.device.address})"
        case Measurement():
            return f"{format_heart_rate(event.bpm)} [{event.zone}]"
        case ZoneChanged():
            return f"Zone changed: {event.zone}"
        case Disconnected(reason=reason) if reason:
            return f"Disconnected from device: {reason}"
        case Disconnected():
            return "Disconnected from device"
        case Error():
            return f"Error ({event.kind}): {event.detail}"
    return repr(event)


def monitor_command(
    device_name: Annotated[
        Optional[str],
        typer.Option("--device-name", help="Connect to the first strap whose name contains this"),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", min=0.1, help="Seconds to scan before giving up"),
    ] = None,
    simulate: bool = typer.Option(
        False,
        "--simulate",
        help="Replay a recorded session instead of using the radio",
    ),
    retry: bool = typer.Option(
        False,
        "--retry",
        help="Scan again after a timeout or a dropped connection",
    ),
    duration: Annotated[
        Optional[float],
        typer.Option("--duration", min=0.0, help="Stop streaming after this many seconds"),
    ] = None,
) -> None:
    backend = BleAdapterBackend.SIMULATED if simulate else Configuration.ble_adapter_backend()
    manager = ConnectionManager(build_adapter(backend))
    monitor = PolarHeartRateMonitor(
        manager,
        name_filter=name_contains(device_name) if device_name else None,
        scan_timeout=timeout,
        rescan=retry,
    )

    finished = threading.Event()

    def on_event(event: SessionEvent) -> None:
        typer.echo(describe_event(event))
        match event:
            case Error(kind=kind) if kind in TERMINAL_ERRORS:
                finished.set()
            case Error(kind=ErrorKind.SCAN_TIMEOUT) if not retry:
                finished.set()
            case Disconnected() if not retry:
                finished.set()

    monitor.observe.pipe(
        ops.map(PeripheralMessageEnvelope[SessionEvent].unwrap_peripheral)
    ).subscribe(on_next=on_event, on_completed=finished.set)

    logger.info("Starting heart rate monitor using the %s adapter", backend)
    monitor.run()
    try:
        finished.wait(timeout=duration)
    except KeyboardInterrupt:
        typer.echo("Interrupted")
    finally:
        monitor.close()
        if not monitor.wait_closed(SHUTDOWN_TIMEOUT_SECONDS):
            logger.warning("Bluetooth session did not shut down in time")

    if monitor.failed:
        raise typer.Exit(code=1)
