import time

import pytest
import reactivex
from typer.testing import CliRunner

from pulselink.cli.commands import monitor as monitor_cli
from pulselink.cli.commands.monitor import describe_event
from pulselink.loop import app
from pulselink.peripheral.heart_rate.errors import (AdapterUnavailable,
                                                    ErrorKind)
from pulselink.peripheral.heart_rate.measurement import ThresholdZone
from pulselink.peripheral.heart_rate.session import (DeviceFound, DeviceRef,
                                                     Disconnected, Error,
                                                     Measurement,
                                                     SessionState,
                                                     StatusChanged)
from pulselink.peripheral.heart_rate.simulated_adapter import (
    SIMULATED_ADDRESS, SIMULATED_NAME, SimulatedAdapter)

runner = CliRunner()


class _PoweredOffAdapter(SimulatedAdapter):
    def scan_for_peripherals(self, service_ids):
        return reactivex.throw(AdapterUnavailable("Bluetooth is powered off"))


@pytest.fixture
def fast_simulation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PULSELINK_SIMULATED_INTERVAL_MS", "20")


class TestDescribeEvent:
    """Group event rendering tests so the console output stays readable."""

    @pytest.mark.parametrize(
        ("event", "text"),
        [
            (StatusChanged(state=SessionState.SCANNING, status="Scanning..."), "Scanning..."),
            (
                DeviceFound(device=DeviceRef("A0:9E:1A:00:00:01", "Polar H10 1")),
                "Found: Polar H10 1 (A0:9E:1A:00:00:01)",
            ),
            (Measurement(bpm=128, zone=ThresholdZone.RISING), "HR: 128 BPM [rising]"),
            (
                Disconnected(reason="GATT error 0x0e"),
                "Disconnected from device: GATT error 0x0e",
            ),
            (
                Error(kind=ErrorKind.SCAN_TIMEOUT, detail="Scan timeout."),
                "Error (scan_timeout): Scan timeout.",
            ),
        ],
    )
    def test_renders_events(self, event: object, text: str) -> None:
        """Verify that each event renders as a single readable line. This ensures the monitor output is easy to follow."""
        assert describe_event(event) == text


class TestCli:
    """Group CLI tests that run against the simulated strap."""

    def test_monitor_streams_simulated_heart_rate(self, fast_simulation: None) -> None:
        """Verify that monitor --simulate connects and prints heart rates. This ensures the full stack works end to end without hardware."""
        result = runner.invoke(app, ["monitor", "--simulate", "--duration", "2"])

        assert result.exit_code == 0, result.output
        assert f"Found: {SIMULATED_NAME} ({SIMULATED_ADDRESS})" in result.output
        assert "HR: 73 BPM [normal]" in result.output
        assert "Disconnected from device" in result.output

    def test_monitor_times_out_without_a_matching_strap(self, fast_simulation: None) -> None:
        """Verify that a name that never advertises ends with a scan timeout. This ensures the command does not hang."""
        result = runner.invoke(
            app,
            ["monitor", "--simulate", "--device-name", "Wahoo", "--timeout", "1.5"],
        )

        assert result.exit_code == 0, result.output
        assert "Error (scan_timeout)" in result.output

    def test_scan_lists_simulated_strap(self) -> None:
        """Verify that scan --simulate lists the advertised strap. This ensures the scan command reports what it sees."""
        result = runner.invoke(app, ["scan", "--simulate", "--timeout", "2"])

        assert result.exit_code == 0, result.output
        assert SIMULATED_ADDRESS in result.output
        assert "device(s) found" in result.output

    def test_monitor_exits_when_scan_fails(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify that an adapter failure during scanning ends the command with an error code. This ensures a powered-off radio does not leave the monitor waiting forever."""
        monkeypatch.setattr(monitor_cli, "build_adapter", lambda backend: _PoweredOffAdapter())
        started = time.monotonic()

        result = runner.invoke(app, ["monitor", "--simulate", "--duration", "10"])

        assert time.monotonic() - started < 5
        assert result.exit_code == 1, result.output
        assert "Error (adapter_unavailable): Bluetooth is powered off" in result.output
