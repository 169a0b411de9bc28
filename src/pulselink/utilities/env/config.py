from pulselink.utilities.env.peripheral import PeripheralConfiguration
from pulselink.utilities.env.system import SystemConfiguration


class Configuration(
    SystemConfiguration,
    PeripheralConfiguration,
):
    """Aggregate environment configuration helpers."""
