import os
import tempfile

# Loggers attach their file handlers at import time.
os.environ.setdefault("PULSELINK_LOG_DIR", tempfile.mkdtemp(prefix="pulselink-logs-"))

import pytest  # noqa: E402
from hypothesis import HealthCheck, settings  # noqa: E402

from helpers.adapter import FakeAdapter  # noqa: E402
from helpers.scheduler import ManualScheduler  # noqa: E402
from pulselink.peripheral.heart_rate.manager import ConnectionManager  # noqa: E402
from pulselink.peripheral.heart_rate.session import SessionEvent  # noqa: E402
from pulselink.utilities.logging_control import get_logging_controller  # noqa: E402

settings.register_profile(
    "default",
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
settings.load_profile("default")

_CONFIG_ENV_VARS = (
    "PULSELINK_BLE_ADAPTER",
    "PULSELINK_DEVICE_NAME",
    "PULSELINK_SCAN_TIMEOUT_SECONDS",
    "PULSELINK_DISCONNECT_GRACE_SECONDS",
    "PULSELINK_ADAPTER_READY_SECONDS",
    "PULSELINK_SIMULATED_INTERVAL_MS",
    "PULSELINK_LOG_RULES",
    "PULSELINK_LOG_DEFAULT_INTERVAL",
    "DEBUG_MODE",
    "LOG_LEVEL",
    "PULSELINK_LOG_TO_FILE",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host configuration from leaking into tests."""

    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_logging_controller.cache_clear()
    yield
    get_logging_controller.cache_clear()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def adapter(scheduler: ManualScheduler) -> FakeAdapter:
    return FakeAdapter(scheduler)


@pytest.fixture
def manager(adapter: FakeAdapter) -> ConnectionManager:
    return ConnectionManager(adapter, disconnect_grace_seconds=5.0)


@pytest.fixture
def events(manager: ConnectionManager) -> list[SessionEvent]:
    received: list[SessionEvent] = []
    manager.events.subscribe(on_next=received.append)
    return received
