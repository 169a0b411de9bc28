"""Adapter that impersonates a heart-rate strap without any radio.

Plays back a recorded session in which the wearer's heart rate climbed from
the low 70s, then continues into a synthetic interval workout so every zone
gets exercised.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Sequence

import reactivex
from reactivex import operators as ops
from reactivex.abc import SchedulerBase
from reactivex.scheduler import EventLoopScheduler
from reactivex.subject import Subject

from pulselink.peripheral.heart_rate.adapter import (BleAdapter,
                                                     CharacteristicDiscovered,
                                                     Connected,
                                                     ConnectionEvent,
                                                     Notification,
                                                     PeripheralDisconnected,
                                                     PeripheralDiscovered,
                                                     ServiceDiscovered,
                                                     Subscribed,
                                                     SubscriptionEvent)
from pulselink.peripheral.heart_rate.errors import AdapterUnavailable
from pulselink.peripheral.heart_rate.gatt import (HEART_RATE_MEASUREMENT_UUID,
                                                  HEART_RATE_SERVICE_UUID)
from pulselink.utilities.env import Configuration
from pulselink.utilities.logging import get_logger

logger = get_logger(__name__)

BATTERY_SERVICE_UUID = "0000180F-0000-1000-8000-00805F9B34FB"
BATTERY_LEVEL_UUID = "00002A19-0000-1000-8000-00805F9B34FB"

SIMULATED_ADDRESS = "A0:9E:1A:00:00:10"
SIMULATED_NAME = "Polar H10 5E1A7ED"

RECORDED_TRACE: tuple[int, ...] = (
    73, 74, 74, 76, 76, 80, 83, 84, 87, 90, 91, 91, 92, 94, 94, 94, 96, 97,
    97, 97, 105, 106, 107, 107, 108, 108, 109, 109, 111, 112, 111, 111, 110,
    110, 110, 110, 110, 110, 110, 111, 110,
    118, 124, 131, 138, 143, 149, 156, 162, 166, 163, 151, 139, 127, 115,
    102, 94, 86, 79, 74,
)


def encode_heart_rate(bpm: int) -> bytes:
    """Encode ``bpm`` the way a strap would, using uint16 only when needed."""

    if bpm > 0xFF:
        return bytes([0x01]) + bpm.to_bytes(2, "little")
    return bytes([0x00, bpm])


class SimulatedAdapter(BleAdapter):
    def __init__(
        self,
        trace: Sequence[int] = RECORDED_TRACE,
        *,
        scheduler: SchedulerBase | None = None,
        interval: timedelta | None = None,
        advertisements: Sequence[PeripheralDiscovered] | None = None,
        scan_delay: timedelta = timedelta(milliseconds=500),
    ) -> None:
        if not trace:
            raise ValueError("trace must contain at least one heart rate")
        self._trace = tuple(trace)
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or EventLoopScheduler()
        self._interval = interval or timedelta(
            milliseconds=Configuration.simulated_interval_ms()
        )
        self._advertisements = tuple(
            advertisements
            if advertisements is not None
            else (
                PeripheralDiscovered(address="5C:F3:70:00:00:01", name="Kitchen Speaker"),
                PeripheralDiscovered(address=SIMULATED_ADDRESS, name=SIMULATED_NAME),
            )
        )
        self._scan_delay = scan_delay
        self._links: dict[str, Subject[PeripheralDisconnected]] = {}
        self._ready = False

    @property
    def scheduler(self) -> SchedulerBase:
        return self._scheduler

    def initialize(self) -> None:
        self._ready = True
        logger.info("Simulated Bluetooth adapter ready")

    def scan_for_peripherals(
        self, service_ids: Iterable[str]
    ) -> reactivex.Observable[PeripheralDiscovered]:
        self._ensure_ready()
        advertisements = self._advertisements
        return reactivex.interval(self._scan_delay, scheduler=self._scheduler).pipe(
            ops.take(len(advertisements)),
            ops.map(lambda index: advertisements[index]),
        )

    def connect(self, address: str) -> reactivex.Observable[ConnectionEvent]:
        self._ensure_ready()
        link: Subject[PeripheralDisconnected] = Subject()
        self._links[address] = link
        discovery: list[ConnectionEvent] = [
            Connected(address=address),
            ServiceDiscovered(address=address, service_id=BATTERY_SERVICE_UUID),
            CharacteristicDiscovered(
                address=address,
                service_id=BATTERY_SERVICE_UUID,
                characteristic_id=BATTERY_LEVEL_UUID,
            ),
            ServiceDiscovered(address=address, service_id=HEART_RATE_SERVICE_UUID.lower()),
            CharacteristicDiscovered(
                address=address,
                service_id=HEART_RATE_SERVICE_UUID.lower(),
                characteristic_id=HEART_RATE_MEASUREMENT_UUID.lower(),
            ),
        ]
        return reactivex.concat(
            reactivex.from_iterable(discovery, scheduler=self._scheduler),
            link,
        )

    def subscribe(
        self, address: str, service_id: str, characteristic_id: str
    ) -> reactivex.Observable[SubscriptionEvent]:
        self._ensure_ready()
        link = self._links.get(address)
        if link is None:
            return reactivex.throw(AdapterUnavailable(f"{address} is not connected"))
        trace = self._trace

        def to_notification(index: int) -> SubscriptionEvent:
            bpm = trace[index % len(trace)]
            return Notification(
                address=address,
                characteristic_id=characteristic_id,
                data=encode_heart_rate(bpm),
            )

        notifications = reactivex.interval(
            self._interval, scheduler=self._scheduler
        ).pipe(ops.map(to_notification))
        subscribed: reactivex.Observable[SubscriptionEvent] = reactivex.return_value(
            Subscribed(address=address, characteristic_id=characteristic_id),
            scheduler=self._scheduler,
        )
        return reactivex.concat(subscribed, notifications).pipe(ops.take_until(link))

    def disconnect(self, address: str) -> reactivex.Observable[PeripheralDisconnected]:
        def _close(_scheduler: SchedulerBase | None) -> reactivex.Observable[PeripheralDisconnected]:
            event = PeripheralDisconnected(address=address)
            link = self._links.pop(address, None)
            if link is not None:
                link.on_next(event)
                link.on_completed()
            return reactivex.return_value(event, scheduler=self._scheduler)

        return reactivex.defer(_close)

    def drop_link(self, address: str = SIMULATED_ADDRESS) -> None:
        """Simulate the strap walking out of range."""

        link = self._links.pop(address, None)
        if link is not None:
            link.on_next(PeripheralDisconnected(address=address))
            link.on_completed()

    def deinitialize(self) -> None:
        self._ready = False
        for address in list(self._links):
            self.drop_link(address)
        if self._owns_scheduler and isinstance(self._scheduler, EventLoopScheduler):
            self._scheduler.dispose()

    def _ensure_ready(self) -> None:
        if not self._ready:
            raise AdapterUnavailable("simulated adapter is not initialized")
