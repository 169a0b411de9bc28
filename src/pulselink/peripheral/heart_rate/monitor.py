from __future__ import annotations

import threading
from datetime import timedelta
from typing import Any, Iterator, Self

import reactivex
from reactivex.abc import DisposableBase, SchedulerBase

from pulselink.peripheral.core import Peripheral, PeripheralInfo, PeripheralTag
from pulselink.peripheral.heart_rate.errors import ErrorKind, PulseLinkError
from pulselink.peripheral.heart_rate.factory import build_adapter
from pulselink.peripheral.heart_rate.gatt import (HEART_RATE_SERVICE_UUID,
                                                  NameFilter, name_contains)
from pulselink.peripheral.heart_rate.manager import ConnectionManager
from pulselink.peripheral.heart_rate.session import (DeviceFound,
                                                     Disconnected, Error,
                                                     SessionEvent,
                                                     format_heart_rate)
from pulselink.utilities.env import Configuration
from pulselink.utilities.logging import get_logger

logger = get_logger(__name__)

TERMINAL_ERRORS = frozenset({ErrorKind.ADAPTER_UNAVAILABLE, ErrorKind.PERMISSION_DENIED})


class PolarHeartRateMonitor(Peripheral[SessionEvent]):
    """Scan for a strap, connect to the first match and stream its heart rate.

    Adapter acquisition happens on the thread that calls ``run``. Every later
    command is issued through the manager's scheduler so it runs on the same
    serialized queue as the adapter's callbacks.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        name_filter: NameFilter | None = None,
        scan_timeout: float | timedelta | None = None,
        auto_connect: bool = True,
        rescan: bool = False,
    ) -> None:
        super().__init__()
        self._manager = manager
        self._name_filter = name_filter or name_contains(
            Configuration.heart_rate_device_name()
        )
        self._scan_timeout = scan_timeout
        self._auto_connect = auto_connect
        self._rescan = rescan
        self._subscription: DisposableBase | None = None
        self._closed = threading.Event()
        self._failed = False

    @classmethod
    def detect(cls) -> Iterator[Self]:
        yield cls(ConnectionManager(build_adapter()))

    def peripheral_info(self) -> PeripheralInfo:
        device = self._manager.device
        return PeripheralInfo(
            id=device.address if device else None,
            tags=[
                PeripheralTag(
                    name="input_variant",
                    variant="heart_rate",
                    metadata={"transport": "ble", "service": HEART_RATE_SERVICE_UUID},
                ),
            ],
        )

    def _event_stream(self) -> reactivex.Observable[SessionEvent]:
        return self._manager.events

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def heart_rate_text(self) -> str:
        return format_heart_rate(self._manager.current_heart_rate)

    def run(self) -> None:
        """Acquire the adapter on the calling thread, then start scanning."""
        if self._subscription is None:
            self._subscription = self._manager.events.subscribe(
                on_next=self._on_event,
                on_completed=self._closed.set,
            )
        try:
            self._manager.initialize()
        except PulseLinkError as error:
            self._failed = True
            logger.error("Heart rate monitor cannot start: %s", error.detail)
            self._manager.teardown()
            return
        self._schedule(self._scan)

    def close(self) -> None:
        if self._manager.torn_down:
            return
        self._schedule(self._manager.teardown)

    def wait_closed(self, timeout: float | None = None) -> bool:
        return self._closed.wait(timeout)

    def _scan(self) -> None:
        self._manager.start_scan(
            HEART_RATE_SERVICE_UUID,
            self._name_filter,
            self._scan_timeout,
        )

    def _on_event(self, event: SessionEvent) -> None:
        match event:
            case DeviceFound() if self._auto_connect:
                self._manager.connect()
            case Error(kind=ErrorKind.SCAN_TIMEOUT) if self._rescan:
                logger.info("No strap found, scanning again")
                self._scan()
            case Error(kind=kind) if kind in TERMINAL_ERRORS:
                self._failed = True
            case Disconnected() if self._rescan and not (
                self._failed or self._manager.torn_down
            ):
                logger.info("Strap disconnected, scanning again")
                self._scan()

    def _schedule(self, command: Any) -> None:
        scheduler: SchedulerBase = self._manager.scheduler

        def _run(_scheduler: SchedulerBase, _state: Any = None) -> None:
            command()

        scheduler.schedule(_run)
