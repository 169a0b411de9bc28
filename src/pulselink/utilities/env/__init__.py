"""Environment configuration helpers."""

from pulselink.utilities.env.config import Configuration as Configuration
from pulselink.utilities.env.enums import BleAdapterBackend as BleAdapterBackend
