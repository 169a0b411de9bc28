from pulselink.peripheral.heart_rate.adapter import BleAdapter
from pulselink.peripheral.heart_rate.bleak_adapter import BleakAdapter
from pulselink.peripheral.heart_rate.simulated_adapter import SimulatedAdapter
from pulselink.utilities.env import BleAdapterBackend, Configuration


def build_adapter(backend: BleAdapterBackend | None = None) -> BleAdapter:
    match backend or Configuration.ble_adapter_backend():
        case BleAdapterBackend.SIMULATED:
            return SimulatedAdapter()
        case BleAdapterBackend.BLEAK:
            return BleakAdapter()
