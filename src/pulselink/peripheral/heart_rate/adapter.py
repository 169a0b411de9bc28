"""Contract between the connection manager and a platform BLE stack.

Every call that talks to the radio returns a lazy ``reactivex.Observable``:
nothing happens until the manager subscribes, and disposing the subscription
cancels the underlying work. Adapters must deliver every notification and
every scheduled action on ``scheduler`` so the manager sees one serialized
stream of events.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Iterable

import reactivex
from reactivex.abc import SchedulerBase


@dataclass(frozen=True, slots=True)
class PeripheralDiscovered:
    address: str
    name: str


@dataclass(frozen=True, slots=True)
class Connected:
    address: str


@dataclass(frozen=True, slots=True)
class ServiceDiscovered:
    address: str
    service_id: str


@dataclass(frozen=True, slots=True)
class CharacteristicDiscovered:
    address: str
    service_id: str
    characteristic_id: str


@dataclass(frozen=True, slots=True)
class PeripheralDisconnected:
    address: str


@dataclass(frozen=True, slots=True)
class Subscribed:
    address: str
    characteristic_id: str


@dataclass(frozen=True, slots=True)
class Notification:
    address: str
    characteristic_id: str
    data: bytes


ConnectionEvent = (
    Connected | ServiceDiscovered | CharacteristicDiscovered | PeripheralDisconnected
)
SubscriptionEvent = Subscribed | Notification
AdapterEvent = PeripheralDiscovered | ConnectionEvent | SubscriptionEvent


class BleAdapter(abc.ABC):
    """Platform BLE central operations consumed by the connection manager."""

    @property
    @abc.abstractmethod
    def scheduler(self) -> SchedulerBase:
        """Scheduler that serializes adapter callbacks and manager timers."""

    @abc.abstractmethod
    def initialize(self) -> None:
        """Acquire the radio.

        Raises ``AdapterUnavailable`` or ``PermissionDenied``.
        """

    @abc.abstractmethod
    def scan_for_peripherals(
        self, service_ids: Iterable[str]
    ) -> reactivex.Observable[PeripheralDiscovered]:
        ...

    @abc.abstractmethod
    def connect(self, address: str) -> reactivex.Observable[ConnectionEvent]:
        ...

    @abc.abstractmethod
    def subscribe(
        self, address: str, service_id: str, characteristic_id: str
    ) -> reactivex.Observable[SubscriptionEvent]:
        ...

    @abc.abstractmethod
    def disconnect(self, address: str) -> reactivex.Observable[PeripheralDisconnected]:
        ...

    @abc.abstractmethod
    def deinitialize(self) -> None:
        ...
