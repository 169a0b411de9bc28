from datetime import timedelta

import pytest
from reactivex import operators as ops

from helpers.adapter import STRAP_ADDRESS, FakeAdapter
from helpers.scheduler import ManualScheduler
from pulselink.peripheral.core import PeripheralMessageEnvelope
from pulselink.peripheral.heart_rate.errors import (AdapterUnavailable,
                                                    PermissionDenied)
from pulselink.peripheral.heart_rate.gatt import HEART_RATE_SERVICE_UUID
from pulselink.peripheral.heart_rate.manager import ConnectionManager
from pulselink.peripheral.heart_rate.monitor import PolarHeartRateMonitor
from pulselink.peripheral.heart_rate.session import (DeviceFound,
                                                     SessionEvent,
                                                     SessionState)
from pulselink.peripheral.heart_rate.simulated_adapter import SimulatedAdapter


def started(monitor: PolarHeartRateMonitor, scheduler: ManualScheduler) -> PolarHeartRateMonitor:
    monitor.run()
    scheduler.run_pending()
    return monitor


class TestPolarHeartRateMonitor:
    """Group monitor peripheral tests so scan-and-connect automation stays dependable."""

    def test_run_scans_and_connects_to_first_strap(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that running the monitor scans and auto-connects. This ensures a strap is streaming without manual commands."""
        started(PolarHeartRateMonitor(manager), scheduler)
        assert manager.state is SessionState.SCANNING
        assert adapter.scan_service_ids == [[HEART_RATE_SERVICE_UUID]]

        adapter.advertise()

        assert manager.state is SessionState.CONNECTING
        assert adapter.connect_calls == [STRAP_ADDRESS]

    def test_auto_connect_can_be_disabled(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that auto_connect=False stops at FOUND. This ensures callers can confirm the strap first."""
        started(PolarHeartRateMonitor(manager, auto_connect=False), scheduler)

        adapter.advertise()

        assert manager.state is SessionState.FOUND
        assert adapter.connect_calls == []

    def test_device_name_comes_from_environment(
        self,
        monkeypatch: pytest.MonkeyPatch,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that the strap name token is configurable. This ensures other strap models can be targeted without code changes."""
        monkeypatch.setenv("PULSELINK_DEVICE_NAME", "HRM-Pro")
        started(PolarHeartRateMonitor(manager), scheduler)

        adapter.advertise()
        assert manager.state is SessionState.SCANNING

        adapter.advertise(name="Garmin HRM-Pro", address="C4:00:00:00:00:01")
        assert manager.state is SessionState.CONNECTING

    def test_observe_wraps_session_events(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that observe publishes session events in peripheral envelopes. This ensures consumers can tell which peripheral spoke."""
        monitor = PolarHeartRateMonitor(manager, auto_connect=False)
        envelopes: list[PeripheralMessageEnvelope[SessionEvent]] = []
        monitor.observe.subscribe(on_next=envelopes.append)
        unwrapped: list[SessionEvent] = []
        monitor.observe.pipe(
            ops.map(PeripheralMessageEnvelope[SessionEvent].unwrap_peripheral)
        ).subscribe(on_next=unwrapped.append)
        started(monitor, scheduler)

        adapter.advertise()

        found = [event for event in unwrapped if isinstance(event, DeviceFound)]
        assert len(found) == 1
        assert envelopes[-1].peripheral_info.id == STRAP_ADDRESS
        tag = envelopes[-1].peripheral_info.tags[0]
        assert (tag.name, tag.variant) == ("input_variant", "heart_rate")

    def test_heart_rate_text(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that the display text tracks the streaming BPM. This ensures the UI shows a placeholder until data arrives."""
        monitor = started(PolarHeartRateMonitor(manager), scheduler)
        assert monitor.heart_rate_text == "HR: -- BPM"

        adapter.advertise()
        adapter.complete_discovery()
        adapter.confirm_subscription()
        adapter.notify(bytes([0x00, 0x4B]))

        assert monitor.heart_rate_text == "HR: 75 BPM"

    def test_rescans_after_timeout(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that rescan=True restarts the scan after a timeout. This ensures a strap put on later is still picked up."""
        started(PolarHeartRateMonitor(manager, scan_timeout=5.0, rescan=True), scheduler)

        scheduler.advance(timedelta(seconds=5))

        assert manager.state is SessionState.SCANNING
        assert len(adapter.scan_service_ids) == 2

    def test_rescans_after_dropped_link(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that rescan=True looks for the strap again after it drops. This ensures walking out of range is recoverable."""
        started(PolarHeartRateMonitor(manager, rescan=True), scheduler)
        adapter.advertise()
        adapter.complete_discovery()
        adapter.confirm_subscription()

        adapter.drop()

        assert manager.state is SessionState.SCANNING

    def test_stops_after_timeout_without_rescan(
        self,
        manager: ConnectionManager,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that the monitor stays idle after a timeout by default. This ensures the radio is not held indefinitely."""
        monitor = started(PolarHeartRateMonitor(manager, scan_timeout=5.0), scheduler)

        scheduler.advance(timedelta(seconds=5))

        assert manager.state is SessionState.IDLE
        assert not monitor.failed

    def test_initialize_failure_marks_monitor_failed(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that a missing adapter fails the monitor and closes it. This ensures the CLI can exit with an error."""
        adapter.initialize_error = AdapterUnavailable("No Bluetooth adapter")
        monitor = started(PolarHeartRateMonitor(manager), scheduler)

        assert monitor.failed
        assert monitor.wait_closed(timeout=0)
        assert adapter.deinitialize_calls == 1

    def test_permission_error_during_scan_marks_failed(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that a permission failure while scanning is terminal. This ensures the user is told to grant Bluetooth access."""
        monitor = started(PolarHeartRateMonitor(manager, rescan=True), scheduler)

        adapter.scan.on_error(PermissionDenied("Bluetooth access denied"))

        assert monitor.failed
        assert manager.state is SessionState.IDLE

    def test_close_tears_down_the_session(
        self,
        manager: ConnectionManager,
        adapter: FakeAdapter,
        scheduler: ManualScheduler,
    ) -> None:
        """Verify that close runs teardown on the session's scheduler. This ensures shutdown is serialized with adapter events."""
        monitor = started(PolarHeartRateMonitor(manager, rescan=True), scheduler)
        adapter.advertise()
        adapter.complete_discovery()
        adapter.confirm_subscription()

        monitor.close()
        assert not monitor.wait_closed(timeout=0)

        scheduler.run_pending()

        assert monitor.wait_closed(timeout=0)
        assert manager.torn_down
        assert manager.state is SessionState.IDLE
        assert adapter.disconnect_calls == [STRAP_ADDRESS]

    def test_detect_uses_configured_backend(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify that detect builds the configured adapter. This ensures the simulated backend can be selected from the environment."""
        monkeypatch.setenv("PULSELINK_BLE_ADAPTER", "simulated")

        monitors = list(PolarHeartRateMonitor.detect())

        assert len(monitors) == 1
        manager = monitors[0].manager
        assert isinstance(manager._adapter, SimulatedAdapter)
        manager.teardown()
