from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    ADAPTER_UNAVAILABLE = "adapter_unavailable"
    PERMISSION_DENIED = "permission_denied"
    SCAN_TIMEOUT = "scan_timeout"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    DECODE_FAILURE = "decode_failure"


class PulseLinkError(Exception):
    """Base class for failures surfaced by the heart-rate session."""

    kind: ErrorKind

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail


class AdapterUnavailable(PulseLinkError):
    """The BLE adapter could not be acquired. Terminal for the session."""

    kind = ErrorKind.ADAPTER_UNAVAILABLE


class PermissionDenied(PulseLinkError):
    """The platform refused Bluetooth access; the caller must re-authorize."""

    kind = ErrorKind.PERMISSION_DENIED


class InvalidStateTransition(PulseLinkError):
    """A command was issued in a state that does not accept it."""

    kind = ErrorKind.INVALID_STATE_TRANSITION
