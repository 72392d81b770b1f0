from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from aromactl.api import Client
from aromactl.core.errors import (
    ConfigValidationError,
    DeliveryFailedError,
    DeviceSelectionError,
    SessionFailedError,
)
from aromactl.core.events import (
    CharacteristicsDiscovered,
    Connected,
    DeviceSighted,
    Disconnected,
    ServicesDiscovered,
    WriteCompleted,
)
from aromactl.core.model import AdapterState
from aromactl.core.service import AromaService

SERVICE_UUID = "a70a0001-7a6d-4c3e-9b1f-61726f6d6100"
CONFIG_UUID = "a70a0002-7a6d-4c3e-9b1f-61726f6d6100"
STATUS_UUID = "a70a0003-7a6d-4c3e-9b1f-61726f6d6100"


class LoopbackAdapter:
    """Answers every request on the event loop the way a healthy radio would."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        state: AdapterState = AdapterState.POWERED_ON,
        sightings: tuple[DeviceSighted, ...] = (DeviceSighted("AA:BB:CC:00:11:22", "AromaX", -48),),
        services: tuple[str, ...] = (SERVICE_UUID,),
        ack: bool = True,
        drop_on_write: bool = False,
    ) -> None:
        self._loop = loop
        self._state = state
        self._sightings = sightings
        self._services = services
        self._ack = ack
        self._drop_on_write = drop_on_write
        self._tokens: dict[str, int] = {}
        self.sink: Callable[[Any], None] | None = None
        self.writes: list[bytes] = []
        self.disconnects: list[str] = []
        self.closed = False

    @property
    def state(self) -> AdapterState:
        return self._state

    def set_event_sink(self, sink: Callable[[Any], None] | None) -> None:
        self.sink = sink

    def _emit(self, event: Any) -> None:
        def deliver() -> None:
            if self.sink is not None:
                self.sink(event)

        self._loop.call_soon(deliver)

    async def probe(self) -> AdapterState:
        return self._state

    async def aclose(self) -> None:
        self.closed = True

    def start_scan(self, service_uuids: tuple[str, ...] = ()) -> None:
        for sighting in self._sightings:
            self._emit(sighting)

    def stop_scan(self) -> None:
        pass

    def connect(self, identifier: str, token: int) -> None:
        self._tokens[identifier] = token
        self._emit(Connected(identifier, token))

    def disconnect(self, identifier: str) -> None:
        self.disconnects.append(identifier)

    def discover_services(self, identifier: str, token: int) -> None:
        self._emit(ServicesDiscovered(identifier, token, self._services))

    def discover_characteristics(self, identifier: str, service_uuid: str, token: int) -> None:
        self._emit(CharacteristicsDiscovered(identifier, token, service_uuid, (CONFIG_UUID, STATUS_UUID)))

    def write(
        self,
        identifier: str,
        characteristic_uuid: str,
        data: bytes,
        write_id: int,
        *,
        with_response: bool = True,
    ) -> None:
        self.writes.append(data)
        if self._drop_on_write:
            self._emit(Disconnected(identifier, self._tokens[identifier], "link closed"))
        elif self._ack:
            self._emit(WriteCompleted(identifier, write_id))
        else:
            self._emit(WriteCompleted(identifier, write_id, error="ATT error 0x0e"))

    def start_notify(self, identifier: str, characteristic_uuid: str) -> None:
        pass


@pytest.fixture(autouse=True)
def _isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


def _factory(created: list[LoopbackAdapter], **options: Any) -> Callable[[asyncio.AbstractEventLoop], LoopbackAdapter]:
    def build(loop: asyncio.AbstractEventLoop) -> LoopbackAdapter:
        adapter = LoopbackAdapter(loop, **options)
        created.append(adapter)
        return adapter

    return build


def test_send_config_runs_full_session() -> None:
    created: list[LoopbackAdapter] = []
    service = AromaService(adapter_factory=_factory(created))

    result = service.send_config(60, 45, device_hint="aromax")

    assert result.device.identifier == "AA:BB:CC:00:11:22"
    assert result.profile.id == "aromatizador"
    assert result.payload_hex == "3c2d"
    assert result.attempts == 1
    adapter = created[0]
    assert adapter.writes == [b"\x3c\x2d"]
    assert adapter.disconnects == ["AA:BB:CC:00:11:22"]
    assert adapter.closed


def test_send_config_validates_before_touching_radio() -> None:
    created: list[LoopbackAdapter] = []
    service = AromaService(adapter_factory=_factory(created))

    with pytest.raises(ConfigValidationError):
        service.send_config(60, 500)
    assert created == []


def test_send_config_unknown_profile() -> None:
    created: list[LoopbackAdapter] = []
    service = AromaService(adapter_factory=_factory(created))

    with pytest.raises(DeviceSelectionError, match="Unknown profile"):
        service.send_config(60, 45, profile_id="missing")
    assert created == []


def test_send_config_missing_service_fails_session() -> None:
    service = AromaService(adapter_factory=_factory([], services=("1800",)))

    with pytest.raises(SessionFailedError, match="not found"):
        service.send_config(60, 45)


def test_send_config_with_adapter_off_fails_session() -> None:
    service = AromaService(adapter_factory=_factory([], state=AdapterState.POWERED_OFF))

    with pytest.raises(SessionFailedError, match="powered_off"):
        service.send_config(60, 45)


def test_send_config_rejected_writes_exhaust_retries() -> None:
    created: list[LoopbackAdapter] = []
    service = AromaService(adapter_factory=_factory(created, ack=False))
    profile = service.get_profile()
    service.profiles[profile.id] = replace(profile, timing=replace(profile.timing, ack_timeout_s=1.0, backoff_s=0.0))

    with pytest.raises(DeliveryFailedError):
        service.send_config(60, 45)
    assert len(created[0].writes) == 3


def test_send_config_reports_lost_link() -> None:
    created: list[LoopbackAdapter] = []
    service = AromaService(adapter_factory=_factory(created, drop_on_write=True))

    with pytest.raises(SessionFailedError, match="lost"):
        service.send_config(60, 45)
    assert created[0].writes == [b"\x3c\x2d"]


def test_scan_returns_devices_sorted_by_signal() -> None:
    sightings = (
        DeviceSighted("AA:BB:CC:00:00:01", "Aroma Far", -80),
        DeviceSighted("AA:BB:CC:00:00:02", "Aroma Near", -40),
        DeviceSighted("AA:BB:CC:00:00:03", "Speaker", -30),
    )
    service = AromaService(adapter_factory=_factory([], sightings=sightings))

    devices = service.scan(window=0.05)

    assert [d.name for d in devices] == ["Aroma Near", "Aroma Far"]


def test_public_client_send_config() -> None:
    client = Client(adapter_factory=_factory([]))

    assert any(p.id == "aromatizador" for p in client.list_profiles())
    result = client.send_config(80, 10)
    assert result.payload_hex == "500a"
    assert client.load_warnings == ()
