"""Session state, device identity and the events a session emits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

from pulselink.peripheral.heart_rate.errors import ErrorKind
from pulselink.peripheral.heart_rate.measurement import ThresholdZone


class SessionState(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    FOUND = "found"
    CONNECTING = "connecting"
    DISCOVERING_SERVICES = "discovering_services"
    SUBSCRIBING = "subscribing"
    STREAMING = "streaming"
    DISCONNECTING = "disconnecting"
    ERROR = "error"

    @property
    def has_device(self) -> bool:
        return self in _DEVICE_STATES

    @property
    def is_connection_phase(self) -> bool:
        return self in _CONNECTION_STATES


_CONNECTION_STATES = frozenset(
    {
        SessionState.CONNECTING,
        SessionState.DISCOVERING_SERVICES,
        SessionState.SUBSCRIBING,
        SessionState.STREAMING,
    }
)
_DEVICE_STATES = _CONNECTION_STATES | {SessionState.FOUND, SessionState.DISCONNECTING}

STATUS_MESSAGES: dict[SessionState, str] = {
    SessionState.IDLE: "Bluetooth ready. Start a scan to find a heart-rate strap.",
    SessionState.SCANNING: "Scanning for heart-rate straps...",
    SessionState.FOUND: "Found: {name}",
    SessionState.CONNECTING: "Connecting to {name}...",
    SessionState.DISCOVERING_SERVICES: "Connected! Discovering services...",
    SessionState.SUBSCRIBING: "Heart rate characteristic found, subscribing...",
    SessionState.STREAMING: "Receiving heart rate from {name}...",
    SessionState.DISCONNECTING: "Disconnecting...",
    SessionState.ERROR: "Bluetooth error: {error}",
}


@dataclass(frozen=True, slots=True)
class DeviceRef:
    """A discovered peripheral. Two refs are the same device when addresses match."""

    address: str
    name: str = field(default="", compare=False)


@dataclass(slots=True)
class Session:
    state: SessionState = SessionState.IDLE
    device: DeviceRef | None = None
    last_heart_rate: int | None = None
    scan_deadline: datetime | None = None
    error: str | None = None

    def status_text(self) -> str:
        name = self.device.name if self.device else ""
        return STATUS_MESSAGES[self.state].format(name=name, error=self.error or "")

    def clear_device(self) -> None:
        self.device = None
        self.last_heart_rate = None
        self.scan_deadline = None


def format_heart_rate(bpm: int | None) -> str:
    if not bpm:
        return "HR: -- BPM"
    return f"HR: {bpm} BPM"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
        kw_only=True,
        compare=False,
    )


@dataclass(frozen=True, slots=True)
class StatusChanged(SessionEvent):
    state: SessionState
    status: str = ""


@dataclass(frozen=True, slots=True)
class DeviceFound(SessionEvent):
    device: DeviceRef


@dataclass(frozen=True, slots=True)
class Measurement(SessionEvent):
    bpm: int
    zone: ThresholdZone


@dataclass(frozen=True, slots=True)
class ZoneChanged(SessionEvent):
    zone: ThresholdZone


@dataclass(frozen=True, slots=True)
class Disconnected(SessionEvent):
    device: DeviceRef | None = None
    reason: str = ""


@dataclass(frozen=True, slots=True)
class Error(SessionEvent):
    kind: ErrorKind
    detail: str = ""
