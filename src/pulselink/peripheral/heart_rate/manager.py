"""Device session state machine for a single BLE heart-rate strap.

The manager never blocks on the radio. Commands issue adapter work and return;
the adapter's events arrive later through ``_post`` and are processed strictly
one at a time against the state recorded at that moment. Anything that no
longer applies (a notification after ``disconnect()``, a discovery that lost
the race against the scan deadline) is dropped.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any

import reactivex
from reactivex.abc import DisposableBase, SchedulerBase
from reactivex.disposable import SerialDisposable
from reactivex.subject import Subject

from pulselink.peripheral.heart_rate.adapter import (BleAdapter,
                                                     CharacteristicDiscovered,
                                                     Connected, Notification,
                                                     PeripheralDisconnected,
                                                     PeripheralDiscovered,
                                                     ServiceDiscovered,
                                                     Subscribed)
from pulselink.peripheral.heart_rate.errors import (ErrorKind,
                                                    InvalidStateTransition,
                                                    PermissionDenied,
                                                    PulseLinkError)
from pulselink.peripheral.heart_rate.gatt import (HEART_RATE_MEASUREMENT_UUID,
                                                  HEART_RATE_SERVICE_UUID,
                                                  NameFilter, name_contains,
                                                  uuid_matches)
from pulselink.peripheral.heart_rate.measurement import (ZoneTracker,
                                                         classify_zone,
                                                         decode_heart_rate)
from pulselink.peripheral.heart_rate.session import (DeviceFound, DeviceRef,
                                                     Disconnected, Error,
                                                     Measurement, Session,
                                                     SessionEvent,
                                                     SessionState,
                                                     StatusChanged,
                                                     ZoneChanged)
from pulselink.utilities.env import Configuration
from pulselink.utilities.logging import get_logger
from pulselink.utilities.logging_control import get_logging_controller

logger = get_logger(__name__)

SCAN = "scan"
SCAN_TIMER = "scan_timer"
CONNECTION = "connection"
NOTIFICATIONS = "notifications"
DISCONNECT = "disconnect"
DISCONNECT_TIMER = "disconnect_timer"


@dataclass(frozen=True, slots=True)
class _ScanDeadlineElapsed:
    pass


@dataclass(frozen=True, slots=True)
class _DisconnectGraceElapsed:
    pass


@dataclass(frozen=True, slots=True)
class _StreamFailed:
    stream: str
    error: Exception


@dataclass(frozen=True, slots=True)
class _StreamCompleted:
    stream: str


class ConnectionManager:
    """Own the single heart-rate session and drive it from adapter events."""

    def __init__(
        self,
        adapter: BleAdapter,
        *,
        scheduler: SchedulerBase | None = None,
        disconnect_grace_seconds: float | None = None,
    ) -> None:
        self._adapter = adapter
        self._scheduler = scheduler or adapter.scheduler
        self._disconnect_grace = timedelta(
            seconds=(
                disconnect_grace_seconds
                if disconnect_grace_seconds is not None
                else Configuration.disconnect_grace_seconds()
            )
        )
        self._session = Session()
        self._zones = ZoneTracker()
        self._events: Subject[SessionEvent] = Subject()
        self._name_filter: NameFilter = name_contains(
            Configuration.heart_rate_device_name()
        )
        self._work: dict[str, SerialDisposable] = {}
        self._epoch = 0
        self._inbox: deque[tuple[int, object]] = deque()
        self._outbox: deque[SessionEvent] = deque()
        self._draining = False
        self._emitting = False
        self._initialized = False
        self._torn_down = False
        self._log_controller = get_logging_controller()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def scheduler(self) -> SchedulerBase:
        return self._scheduler

    @property
    def events(self) -> reactivex.Observable[SessionEvent]:
        return self._events

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def session(self) -> Session:
        """Return a snapshot of the session; mutating it has no effect."""
        return replace(self._session)

    @property
    def device(self) -> DeviceRef | None:
        return self._session.device

    @property
    def current_heart_rate(self) -> int:
        if self._session.state is not SessionState.STREAMING:
            return 0
        return self._session.last_heart_rate or 0

    @property
    def is_connected(self) -> bool:
        return self._session.state is SessionState.STREAMING

    @property
    def connected_device_name(self) -> str:
        if self._session.device is None:
            return ""
        return self._session.device.name

    @property
    def status_text(self) -> str:
        return self._session.status_text()

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        if self._torn_down:
            raise InvalidStateTransition("session has been torn down")
        if self._initialized:
            return
        try:
            self._adapter.initialize()
        except PulseLinkError as error:
            logger.error("Bluetooth initialization failed: %s", error.detail)
            self._session.error = error.detail
            self._transition(SessionState.ERROR)
            self._emit(Error(kind=error.kind, detail=error.detail))
            raise
        self._initialized = True
        logger.info("Bluetooth adapter ready")
        self._transition(SessionState.IDLE)

    def start_scan(
        self,
        service_filter: str = HEART_RATE_SERVICE_UUID,
        name_filter: NameFilter | None = None,
        timeout: float | timedelta | None = None,
    ) -> None:
        self._require(SessionState.IDLE, "start_scan")
        if timeout is None:
            timeout = Configuration.scan_timeout_seconds()
        if not isinstance(timeout, timedelta):
            timeout = timedelta(seconds=timeout)
        if timeout <= timedelta(0):
            raise ValueError("scan timeout must be positive")
        if name_filter is not None:
            self._name_filter = name_filter

        self._session.clear_device()
        self._session.scan_deadline = self._scheduler.now + timeout
        self._transition(SessionState.SCANNING)
        logger.info(
            "Scanning for %s peripherals for %.1fs",
            service_filter,
            timeout.total_seconds(),
        )
        self._schedule(SCAN_TIMER, timeout, _ScanDeadlineElapsed())
        self._watch(SCAN, self._adapter.scan_for_peripherals([service_filter]))

    def connect(self) -> None:
        self._require(SessionState.FOUND, "connect")
        device = self._require_device("connect")
        logger.info("Connecting to %s (%s)", device.name, device.address)
        self._transition(SessionState.CONNECTING)
        self._watch(CONNECTION, self._adapter.connect(device.address))

    def disconnect(self) -> None:
        """Leave the current session. Calling this while idle does nothing."""
        state = self._session.state
        if state in (SessionState.IDLE, SessionState.ERROR, SessionState.DISCONNECTING):
            return
        if state in (SessionState.SCANNING, SessionState.FOUND):
            logger.info("Abandoning %s without a connection", state)
            self._reset_to_idle()
            return

        device = self._require_device("disconnect")
        self._epoch += 1
        self._cancel(CONNECTION, NOTIFICATIONS)
        self._transition(SessionState.DISCONNECTING)
        self._schedule(DISCONNECT_TIMER, self._disconnect_grace, _DisconnectGraceElapsed())
        self._watch(DISCONNECT, self._adapter.disconnect(device.address))

    def on_notification(self, data: bytes | bytearray) -> None:
        if self._session.state is not SessionState.STREAMING:
            logger.debug(
                "Dropping notification received while %s", self._session.state
            )
            return

        measurement = decode_heart_rate(data)
        if not measurement.valid:
            self._log_controller.log(
                key="heart_rate.decode_failure",
                logger=logger,
                level=logging.WARNING,
                msg="Invalid heart rate data received: %r",
                args=(bytes(data),),
            )
            return

        self._session.last_heart_rate = measurement.bpm
        zone = classify_zone(measurement.bpm)
        self._log_controller.log(
            key="heart_rate.measurement",
            logger=logger,
            level=logging.INFO,
            msg="Heart Rate: %s BPM (%s)",
            args=(measurement.bpm, zone),
        )
        self._emit(Measurement(bpm=measurement.bpm, zone=zone))
        changed = self._zones.update(zone)
        if changed is not None:
            logger.info("Heart rate zone is now %s", changed)
            self._emit(ZoneChanged(zone=changed))

    def teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True

        device = self._session.device
        connected = self._session.state.is_connection_phase
        linked = connected or self._session.state is SessionState.DISCONNECTING
        self._epoch += 1
        self._cancel(*self._work)

        if connected and device is not None:
            self._release_link(device)
        self._adapter.deinitialize()
        logger.info("Bluetooth deinitialized")

        if self._session.state not in (SessionState.IDLE, SessionState.ERROR):
            self._session.clear_device()
            self._zones.reset()
            self._transition(SessionState.IDLE)
            if linked:
                self._emit(Disconnected(device=device))
        self._events.on_completed()

    # ------------------------------------------------------------------
    # Serialized event processing
    # ------------------------------------------------------------------
    def _post(self, epoch: int, event: object) -> None:
        self._inbox.append((epoch, event))
        if self._draining:
            return
        self._draining = True
        try:
            while self._inbox:
                event_epoch, pending = self._inbox.popleft()
                if event_epoch != self._epoch:
                    logger.debug("Discarding stale adapter event %r", pending)
                    continue
                self._dispatch(pending)
        finally:
            self._draining = False

    def _dispatch(self, event: object) -> None:
        match event:
            case PeripheralDiscovered():
                self._on_discovered(event)
            case _ScanDeadlineElapsed():
                self._on_scan_deadline()
            case Connected():
                self._on_connected(event)
            case ServiceDiscovered():
                logger.debug("Service discovered: %s", event.service_id)
            case CharacteristicDiscovered():
                self._on_characteristic(event)
            case Subscribed():
                self._on_subscribed()
            case Notification():
                self.on_notification(event.data)
            case PeripheralDisconnected():
                self._on_peripheral_disconnected(event)
            case _DisconnectGraceElapsed():
                logger.warning("No disconnect confirmation, forcing idle")
                self._finish_disconnect()
            case _StreamFailed():
                self._on_stream_failed(event)
            case _StreamCompleted():
                self._on_stream_completed(event)
            case _:
                logger.warning("Ignoring unknown adapter event %r", event)

    def _on_discovered(self, event: PeripheralDiscovered) -> None:
        if self._session.state is not SessionState.SCANNING:
            return
        logger.debug("Found device: %s (%s)", event.name, event.address)
        if not self._name_filter(event.name or ""):
            return

        self._cancel(SCAN, SCAN_TIMER)
        device = DeviceRef(address=event.address, name=event.name)
        self._session.device = device
        self._session.scan_deadline = None
        logger.info("Heart rate device found: %s at %s", device.name, device.address)
        self._transition(SessionState.FOUND)
        self._emit(DeviceFound(device=device))

    def _on_scan_deadline(self) -> None:
        if self._session.state is not SessionState.SCANNING:
            return
        logger.info("Scan timeout")
        self._reset_to_idle()
        self._emit(
            Error(
                kind=ErrorKind.SCAN_TIMEOUT,
                detail="Scan timeout. No matching heart rate device found.",
            )
        )

    def _on_connected(self, event: Connected) -> None:
        if self._session.state is not SessionState.CONNECTING:
            return
        logger.info("Connected to %s", event.address)
        self._transition(SessionState.DISCOVERING_SERVICES)

    def _on_characteristic(self, event: CharacteristicDiscovered) -> None:
        logger.debug("Characteristic discovered: %s", event.characteristic_id)
        if self._session.state not in (
            SessionState.CONNECTING,
            SessionState.DISCOVERING_SERVICES,
        ):
            return
        if not uuid_matches(event.characteristic_id, HEART_RATE_MEASUREMENT_UUID):
            return

        self._transition(SessionState.SUBSCRIBING)
        self._watch(
            NOTIFICATIONS,
            self._adapter.subscribe(
                event.address, event.service_id, event.characteristic_id
            ),
        )

    def _on_subscribed(self) -> None:
        if self._session.state is not SessionState.SUBSCRIBING:
            return
        logger.info("Successfully subscribed to heart rate notifications")
        self._transition(SessionState.STREAMING)

    def _on_peripheral_disconnected(self, event: PeripheralDisconnected) -> None:
        device = self._session.device
        if device is None or device.address != event.address:
            return
        if self._session.state is SessionState.DISCONNECTING:
            self._finish_disconnect()
        elif self._session.state.is_connection_phase:
            logger.warning("Disconnected from %s", event.address)
            self._reset_to_idle()
            self._emit(Disconnected(device=device))

    def _on_stream_failed(self, event: _StreamFailed) -> None:
        error = event.error
        state = self._session.state
        if event.stream == SCAN:
            if state is not SessionState.SCANNING:
                return
            logger.error("Scan failed: %s", error)
            self._reset_to_idle()
            self._emit_failure(error)
        elif event.stream == DISCONNECT:
            logger.warning("Disconnect reported an error: %s", error)
            self._finish_disconnect()
        elif state.is_connection_phase:
            logger.error("Connection to device failed: %s", error)
            device = self._session.device
            self._reset_to_idle()
            if device is not None:
                self._release_link(device)
            if isinstance(error, PermissionDenied):
                self._emit_failure(error)
            detail = error.detail if isinstance(error, PulseLinkError) else str(error)
            self._emit(Disconnected(device=device, reason=detail))

    def _on_stream_completed(self, event: _StreamCompleted) -> None:
        if event.stream == DISCONNECT:
            self._finish_disconnect()

    def _finish_disconnect(self) -> None:
        if self._session.state is not SessionState.DISCONNECTING:
            return
        device = self._session.device
        logger.info("Disconnected. Start a scan to reconnect.")
        self._reset_to_idle()
        self._emit(Disconnected(device=device))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require(self, expected: SessionState, command: str) -> None:
        if self._torn_down:
            raise InvalidStateTransition(f"{command}: session has been torn down")
        if not self._initialized:
            raise InvalidStateTransition(f"{command}: adapter is not initialized")
        if self._session.state is not expected:
            raise InvalidStateTransition(
                f"{command} requires {expected}, session is {self._session.state}"
            )

    def _require_device(self, command: str) -> DeviceRef:
        device = self._session.device
        if device is None:
            raise InvalidStateTransition(
                f"{command}: no device recorded while {self._session.state}"
            )
        return device

    def _release_link(self, device: DeviceRef) -> None:
        # Fire and forget.
        self._adapter.disconnect(device.address).subscribe(
            on_error=lambda error: logger.warning(
                "Disconnect of %s failed: %s", device.address, error
            ),
            scheduler=self._scheduler,
        )

    def _transition(self, state: SessionState) -> None:
        previous = self._session.state
        self._session.state = state
        logger.debug("Session %s -> %s", previous, state)
        self._emit(StatusChanged(state=state, status=self._session.status_text()))

    def _reset_to_idle(self) -> None:
        self._epoch += 1
        self._cancel(*self._work)
        self._session.clear_device()
        self._zones.reset()
        self._transition(SessionState.IDLE)

    def _emit(self, event: SessionEvent) -> None:
        # Events raised while subscribers are still handling an earlier one are
        # queued so observers always see transitions in order.
        self._outbox.append(event)
        if self._emitting:
            return
        self._emitting = True
        try:
            while self._outbox:
                self._events.on_next(self._outbox.popleft())
        finally:
            self._emitting = False

    def _emit_failure(self, error: Exception) -> None:
        if isinstance(error, PulseLinkError):
            self._emit(Error(kind=error.kind, detail=error.detail))
        else:
            self._emit(Error(kind=ErrorKind.ADAPTER_UNAVAILABLE, detail=str(error)))

    def _watch(self, stream: str, source: reactivex.Observable[Any]) -> None:
        epoch = self._epoch
        slot = self._slot(stream)
        slot.disposable = source.subscribe(
            on_next=lambda event: self._post(epoch, event),
            on_error=lambda error: self._post(epoch, _StreamFailed(stream, error)),
            on_completed=lambda: self._post(epoch, _StreamCompleted(stream)),
            scheduler=self._scheduler,
        )

    def _schedule(self, timer: str, delay: timedelta, event: object) -> None:
        epoch = self._epoch
        slot = self._slot(timer)
        slot.disposable = self._scheduler.schedule_relative(
            delay, lambda _scheduler, _state: self._post(epoch, event)
        )

    def _slot(self, name: str) -> SerialDisposable:
        self._cancel(name)
        slot = SerialDisposable()
        self._work[name] = slot
        return slot

    def _cancel(self, *names: str) -> None:
        for name in list(names):
            disposable: DisposableBase | None = self._work.pop(name, None)
            if disposable is not None:
                disposable.dispose()
