from enum import StrEnum


class BleAdapterBackend(StrEnum):
    BLEAK = "bleak"
    SIMULATED = "simulated"
