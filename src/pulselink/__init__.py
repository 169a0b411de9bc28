"""BLE heart-rate strap client."""

__version__ = "0.1.0"
