import asyncio
import atexit
import concurrent.futures
import threading
from typing import Any, Coroutine, Iterable

import reactivex
from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError
from reactivex.abc import ObserverBase, SchedulerBase
from reactivex.disposable import Disposable
from reactivex.scheduler.eventloop import AsyncIOThreadSafeScheduler

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
from pulselink.peripheral.heart_rate.errors import (AdapterUnavailable,
                                                    PermissionDenied,
                                                    PulseLinkError)
from pulselink.utilities.env import Configuration
from pulselink.utilities.logging import get_logger

BLEAK_ERRORS = (BleakError, OSError, asyncio.TimeoutError)
SHUTDOWN_TIMEOUT_SECONDS = 5.0
_PERMISSION_MARKERS = ("accessdenied", "not authorized", "unauthorized", "permission")


def translate_bleak_error(error: BaseException) -> PulseLinkError:
    """Map a bleak/OS failure onto the session's error kinds."""

    detail = str(error) or type(error).__name__
    reason = getattr(error, "reason", None)
    if reason is not None and "DENIED" in getattr(reason, "name", ""):
        return PermissionDenied(detail)
    haystack = f"{detail} {getattr(error, 'dbus_error', '') or ''}".lower()
    if isinstance(error, PermissionError) or any(
        marker in haystack for marker in _PERMISSION_MARKERS
    ):
        return PermissionDenied(detail)
    return AdapterUnavailable(detail)


class BleakAdapter(BleAdapter):
    """BLE central backed by bleak, running on a private asyncio loop thread.

    Every bleak callback fires on that loop and the exposed scheduler posts
    onto the same loop, so the connection manager only ever runs on one
    thread.
    """

    def __init__(self, *, ready_seconds: float | None = None) -> None:
        self._ready_seconds = (
            ready_seconds
            if ready_seconds is not None
            else Configuration.adapter_ready_seconds()
        )
        self._loop = asyncio.new_event_loop()
        self._scheduler = AsyncIOThreadSafeScheduler(self._loop)
        self._thread: threading.Thread | None = None
        self._clients: dict[str, BleakClient] = {}
        self._devices: dict[str, BLEDevice] = {}
        self._logger = get_logger(f"{__name__}.{type(self).__name__}")

    @property
    def scheduler(self) -> SchedulerBase:
        return self._scheduler

    def initialize(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._run_loop,
                name="BleakAdapter",
                daemon=True,
            )
            self._thread.start()
            atexit.register(self.deinitialize)

        self._logger.debug("Checking Bluetooth adapter for %.1fs", self._ready_seconds)
        try:
            self._submit(self._check_radio()).result(
                timeout=self._ready_seconds + SHUTDOWN_TIMEOUT_SECONDS
            )
        except concurrent.futures.TimeoutError as exc:
            raise AdapterUnavailable("Bluetooth adapter did not respond") from exc
        except BLEAK_ERRORS as exc:
            raise translate_bleak_error(exc) from exc

    def scan_for_peripherals(
        self, service_ids: Iterable[str]
    ) -> reactivex.Observable[PeripheralDiscovered]:
        service_uuids = [service_id.lower() for service_id in service_ids]

        def _subscribe(
            observer: ObserverBase[PeripheralDiscovered],
            _scheduler: SchedulerBase | None = None,
        ) -> Disposable:
            def on_detection(device: BLEDevice, advertisement: AdvertisementData) -> None:
                self._devices[device.address] = device
                name = advertisement.local_name or device.name or ""
                observer.on_next(PeripheralDiscovered(address=device.address, name=name))

            async def _scan() -> None:
                scanner = BleakScanner(
                    detection_callback=on_detection,
                    service_uuids=service_uuids,
                )
                try:
                    await scanner.start()
                except BLEAK_ERRORS as exc:
                    observer.on_error(translate_bleak_error(exc))
                    return
                try:
                    # Runs until the subscription is disposed.
                    await asyncio.Event().wait()
                finally:
                    await scanner.stop()

            return Disposable(self._submit(_scan()).cancel)

        return reactivex.create(_subscribe)

    def connect(self, address: str) -> reactivex.Observable[ConnectionEvent]:
        def _subscribe(
            observer: ObserverBase[ConnectionEvent],
            _scheduler: SchedulerBase | None = None,
        ) -> Disposable:
            def on_disconnect(_client: BleakClient) -> None:
                self._clients.pop(address, None)
                observer.on_next(PeripheralDisconnected(address=address))
                observer.on_completed()

            async def _connect() -> None:
                client = BleakClient(
                    self._devices.get(address, address),
                    disconnected_callback=on_disconnect,
                )
                try:
                    await client.connect()
                except asyncio.CancelledError:
                    await client.disconnect()
                    raise
                except BLEAK_ERRORS as exc:
                    observer.on_error(translate_bleak_error(exc))
                    return

                self._clients[address] = client
                observer.on_next(Connected(address=address))
                for service in client.services:
                    observer.on_next(
                        ServiceDiscovered(address=address, service_id=service.uuid)
                    )
                    for characteristic in service.characteristics:
                        observer.on_next(
                            CharacteristicDiscovered(
                                address=address,
                                service_id=service.uuid,
                                characteristic_id=characteristic.uuid,
                            )
                        )

            return Disposable(self._submit(_connect()).cancel)

        return reactivex.create(_subscribe)

    def subscribe(
        self, address: str, service_id: str, characteristic_id: str
    ) -> reactivex.Observable[SubscriptionEvent]:
        def _subscribe(
            observer: ObserverBase[SubscriptionEvent],
            _scheduler: SchedulerBase | None = None,
        ) -> Disposable:
            def on_notify(_sender: BleakGATTCharacteristic, data: bytearray) -> None:
                observer.on_next(
                    Notification(
                        address=address,
                        characteristic_id=characteristic_id,
                        data=bytes(data),
                    )
                )

            async def _start_notify() -> None:
                client = self._clients.get(address)
                if client is None or not client.is_connected:
                    observer.on_error(AdapterUnavailable(f"{address} is not connected"))
                    return
                try:
                    await client.start_notify(characteristic_id, on_notify)
                except BLEAK_ERRORS as exc:
                    observer.on_error(translate_bleak_error(exc))
                    return
                observer.on_next(
                    Subscribed(address=address, characteristic_id=characteristic_id)
                )

            future = self._submit(_start_notify())

            def _dispose() -> None:
                future.cancel()
                self._submit(self._stop_notify(address, characteristic_id))

            return Disposable(_dispose)

        return reactivex.create(_subscribe)

    def disconnect(self, address: str) -> reactivex.Observable[PeripheralDisconnected]:
        def _subscribe(
            observer: ObserverBase[PeripheralDisconnected],
            _scheduler: SchedulerBase | None = None,
        ) -> Disposable:
            async def _disconnect() -> None:
                client = self._clients.pop(address, None)
                if client is not None:
                    try:
                        await client.disconnect()
                    except BLEAK_ERRORS as exc:
                        observer.on_error(translate_bleak_error(exc))
                        return
                observer.on_next(PeripheralDisconnected(address=address))
                observer.on_completed()

            return Disposable(self._submit(_disconnect()).cancel)

        return reactivex.create(_subscribe)

    def deinitialize(self) -> None:
        if self._thread is None:
            return
        thread, self._thread = self._thread, None
        atexit.unregister(self.deinitialize)
        if threading.current_thread() is thread:
            # Called from a manager callback; the loop cannot wait on itself.
            self._loop.create_task(self._shutdown())
            return
        try:
            self._submit(self._shutdown()).result(timeout=SHUTDOWN_TIMEOUT_SECONDS)
        except concurrent.futures.TimeoutError:
            self._logger.warning("Bluetooth shutdown timed out")
        thread.join(timeout=SHUTDOWN_TIMEOUT_SECONDS)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def _submit(self, coroutine: Coroutine[Any, Any, None]) -> concurrent.futures.Future[None]:
        return asyncio.run_coroutine_threadsafe(coroutine, self._loop)

    async def _check_radio(self) -> None:
        await BleakScanner.discover(timeout=self._ready_seconds)

    async def _stop_notify(self, address: str, characteristic_id: str) -> None:
        client = self._clients.get(address)
        if client is None or not client.is_connected:
            return
        try:
            await client.stop_notify(characteristic_id)
        except BLEAK_ERRORS:
            self._logger.debug("stop_notify failed for %s", address, exc_info=True)

    async def _shutdown(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        try:
            for client in clients:
                await client.disconnect()
        except BLEAK_ERRORS:
            self._logger.warning("Failed to disconnect cleanly", exc_info=True)
        finally:
            self._loop.stop()
