"""BLE adapter implementation on top of bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from concurrent.futures import Future
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from aromactl.core.events import (
    AdapterEvent,
    AdapterStateChanged,
    CharacteristicsDiscovered,
    Connected,
    ConnectFailed,
    Disconnected,
    DeviceSighted,
    ServicesDiscovered,
    StatusNotified,
    WriteCompleted,
)
from aromactl.core.gatt import same_uuid
from aromactl.core.model import AdapterState
from aromactl.transports.base import EventSink

LOGGER = logging.getLogger(__name__)

_CLOSE_TIMEOUT_S = 5.0
_UNSUPPORTED_MARKERS = ("no bluetooth adapter", "adapter not found", "not supported", "unsupported")


def classify_error(exc: BaseException) -> AdapterState:
    message = str(exc).lower()
    if any(marker in message for marker in _UNSUPPORTED_MARKERS):
        return AdapterState.UNSUPPORTED
    return AdapterState.POWERED_OFF


class BleakAdapter:
    """Adapter whose requests run as tasks on ``loop``.

    Every outcome is reported through the event sink; errors raised by bleak
    become failure events carrying the error text.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._sink: EventSink | None = None
        self._state = AdapterState.UNKNOWN
        self._scanner: BleakScanner | None = None
        self._devices: dict[str, BLEDevice] = {}
        self._clients: dict[str, BleakClient] = {}
        self._tasks: set[Future[None]] = set()

    @property
    def state(self) -> AdapterState:
        return self._state

    def set_event_sink(self, sink: EventSink | None) -> None:
        self._sink = sink

    async def probe(self) -> AdapterState:
        """Find out whether the radio is usable by starting a short scan."""
        scanner = BleakScanner()
        try:
            await scanner.start()
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.warning("Bluetooth adapter probe failed: %s", exc)
            self._set_state(classify_error(exc))
        else:
            self._set_state(AdapterState.POWERED_ON)
        return self._state

    def start_scan(self, service_uuids: tuple[str, ...] = ()) -> None:
        self._spawn(self._start_scan(service_uuids))

    def stop_scan(self) -> None:
        self._spawn(self._stop_scan())

    def connect(self, identifier: str, token: int) -> None:
        self._spawn(self._connect(identifier, token))

    def disconnect(self, identifier: str) -> None:
        client = self._clients.pop(identifier, None)
        if client is not None:
            self._spawn(self._disconnect(identifier, client))

    def discover_services(self, identifier: str, token: int) -> None:
        client = self._clients.get(identifier)
        if client is None:
            self._emit(ServicesDiscovered(identifier, token, (), error="not connected"))
            return
        uuids = tuple(service.uuid for service in client.services)
        self._emit(ServicesDiscovered(identifier, token, uuids))

    def discover_characteristics(self, identifier: str, service_uuid: str, token: int) -> None:
        client = self._clients.get(identifier)
        if client is None:
            self._emit(CharacteristicsDiscovered(identifier, token, service_uuid, (), error="not connected"))
            return
        for service in client.services:
            if same_uuid(service.uuid, service_uuid):
                uuids = tuple(char.uuid for char in service.characteristics)
                self._emit(CharacteristicsDiscovered(identifier, token, service_uuid, uuids))
                return
        self._emit(CharacteristicsDiscovered(identifier, token, service_uuid, ()))

    def write(
        self,
        identifier: str,
        characteristic_uuid: str,
        data: bytes,
        write_id: int,
        *,
        with_response: bool = True,
    ) -> None:
        client = self._clients.get(identifier)
        if client is None:
            raise BleakError(f"{identifier} is not connected")
        self._spawn(self._write(identifier, client, characteristic_uuid, data, write_id, with_response))

    def start_notify(self, identifier: str, characteristic_uuid: str) -> None:
        client = self._clients.get(identifier)
        if client is None:
            raise BleakError(f"{identifier} is not connected")
        self._spawn(self._start_notify(identifier, client, characteristic_uuid))

    async def aclose(self) -> None:
        await asyncio.sleep(0)
        pending = [asyncio.wrap_future(task) for task in list(self._tasks)]
        if pending:
            await asyncio.wait(pending, timeout=_CLOSE_TIMEOUT_S)
        await self._stop_scan()
        for identifier, client in list(self._clients.items()):
            self._clients.pop(identifier, None)
            await self._disconnect(identifier, client)
        for task in list(self._tasks):
            task.cancel()

    def _set_state(self, state: AdapterState) -> None:
        if state is self._state:
            return
        self._state = state
        self._emit(AdapterStateChanged(state))

    def _emit(self, event: AdapterEvent) -> None:
        if self._sink is not None:
            self._sink(event)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.run_coroutine_threadsafe(coro, self._loop)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData) -> None:
        self._devices[device.address] = device
        self._emit(
            DeviceSighted(
                identifier=device.address,
                name=advertisement.local_name or device.name,
                rssi=advertisement.rssi,
                service_uuids=tuple(advertisement.service_uuids),
            )
        )

    async def _start_scan(self, service_uuids: tuple[str, ...]) -> None:
        await self._stop_scan()
        scanner = BleakScanner(
            detection_callback=self._on_detection,
            service_uuids=list(service_uuids) or None,
        )
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            LOGGER.warning("Could not start BLE scan: %s", exc)
            self._set_state(classify_error(exc))
            return
        self._scanner = scanner
        self._set_state(AdapterState.POWERED_ON)

    async def _stop_scan(self) -> None:
        scanner = self._scanner
        self._scanner = None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except (BleakError, OSError) as exc:
            LOGGER.warning("Could not stop BLE scan: %s", exc)

    async def _connect(self, identifier: str, token: int) -> None:
        target: BLEDevice | str = self._devices.get(identifier, identifier)
        def _on_disconnect(dropped: BleakClient) -> None:
            if self._clients.get(identifier) is dropped:
                del self._clients[identifier]
            self._emit(Disconnected(identifier, token, "link closed"))

        client = BleakClient(target, disconnected_callback=_on_disconnect)
        try:
            await client.connect()
        except Exception as exc:
            self._emit(ConnectFailed(identifier, token, str(exc) or type(exc).__name__))
            return
        self._clients[identifier] = client
        self._emit(Connected(identifier, token))

    async def _disconnect(self, identifier: str, client: BleakClient) -> None:
        try:
            await client.disconnect()
        except Exception as exc:
            LOGGER.warning("Physical disconnect of %s failed: %s", identifier, exc)

    async def _write(
        self,
        identifier: str,
        client: BleakClient,
        characteristic_uuid: str,
        data: bytes,
        write_id: int,
        with_response: bool,
    ) -> None:
        try:
            await client.write_gatt_char(characteristic_uuid, data, response=with_response)
        except Exception as exc:
            self._emit(WriteCompleted(identifier, write_id, error=str(exc) or type(exc).__name__))
            return
        self._emit(WriteCompleted(identifier, write_id))

    async def _start_notify(self, identifier: str, client: BleakClient, characteristic_uuid: str) -> None:
        def _notify_handler(_: Any, data: bytearray) -> None:
            self._emit(StatusNotified(identifier, characteristic_uuid, bytes(data)))

        try:
            await client.start_notify(characteristic_uuid, _notify_handler)
        except Exception as exc:
            LOGGER.warning("Could not subscribe to %s on %s: %s", characteristic_uuid, identifier, exc)
