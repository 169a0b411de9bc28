import os

from pulselink.utilities.env.enums import BleAdapterBackend
from pulselink.utilities.env.parsing import _env_float, _env_int, _env_str

DEFAULT_DEVICE_NAME = "Polar H10"
DEFAULT_SCAN_TIMEOUT_SECONDS = 15.0


class PeripheralConfiguration:
    @classmethod
    def ble_adapter_backend(cls) -> BleAdapterBackend:
        backend = os.environ.get("PULSELINK_BLE_ADAPTER", "bleak").strip().lower()
        try:
            return BleAdapterBackend(backend)
        except ValueError as exc:
            raise ValueError(
                "PULSELINK_BLE_ADAPTER must be 'bleak' or 'simulated'"
            ) from exc

    @classmethod
    def heart_rate_device_name(cls) -> str:
        return _env_str("PULSELINK_DEVICE_NAME", default=DEFAULT_DEVICE_NAME)

    @classmethod
    def scan_timeout_seconds(cls) -> float:
        return _env_float(
            "PULSELINK_SCAN_TIMEOUT_SECONDS",
            default=DEFAULT_SCAN_TIMEOUT_SECONDS,
            minimum=0.0,
            allow_zero=False,
        )

    @classmethod
    def disconnect_grace_seconds(cls) -> float:
        return _env_float("PULSELINK_DISCONNECT_GRACE_SECONDS", default=5.0, minimum=0.0)

    @classmethod
    def adapter_ready_seconds(cls) -> float:
        return _env_float(
            "PULSELINK_ADAPTER_READY_SECONDS",
            default=2.0,
            minimum=0.0,
            allow_zero=False,
        )

    @classmethod
    def simulated_interval_ms(cls) -> int:
        return _env_int("PULSELINK_SIMULATED_INTERVAL_MS", default=1000, minimum=1)
