from __future__ import annotations

import pytest

from aromactl.core.connection import Connection
from aromactl.core.errors import CharacteristicNotFoundError, DiscoveryTimeoutError, ServiceNotFoundError
from aromactl.core.events import CharacteristicsDiscovered, ServicesDiscovered
from aromactl.core.model import DeviceHandle
from aromactl.core.resolver import Resolver

SERVICE_UUID = "a70a0001-7a6d-4c3e-9b1f-61726f6d6100"
CONFIG_UUID = "a70a0002-7a6d-4c3e-9b1f-61726f6d6100"
STATUS_UUID = "a70a0003-7a6d-4c3e-9b1f-61726f6d6100"
DEVICE = DeviceHandle(identifier="AA:BB:CC:00:11:22", name="AromaX", rssi=-50, last_seen=0.0)


@pytest.fixture
def connection() -> Connection:
    return Connection(DEVICE, token=1)


@pytest.fixture
def resolver(executor, adapter) -> Resolver:
    return Resolver(executor, adapter)


def _services(adapter, *uuids: str, error: str | None = None) -> ServicesDiscovered:
    token = adapter.last("discover_services")[2]
    return ServicesDiscovered(DEVICE.identifier, token, uuids, error=error)


def _characteristics(adapter, *uuids: str, error: str | None = None) -> CharacteristicsDiscovered:
    token = adapter.last("discover_characteristics")[3]
    return CharacteristicsDiscovered(DEVICE.identifier, token, SERVICE_UUID, uuids, error=error)


def test_resolves_regardless_of_order(resolver: Resolver, connection: Connection, adapter, executor) -> None:
    future = resolver.resolve(connection, SERVICE_UUID.upper(), CONFIG_UUID, timeout=10, status_id=STATUS_UUID)
    resolver.handle_services(_services(adapter, "180a", SERVICE_UUID, "1800"))
    assert adapter.last("discover_characteristics")[2] == SERVICE_UUID
    resolver.handle_characteristics(_characteristics(adapter, STATUS_UUID.upper(), "2a00", CONFIG_UUID))

    handle = future.result()
    assert handle.connection is connection
    assert handle.characteristic_uuid == CONFIG_UUID
    assert handle.status_uuid == STATUS_UUID
    assert executor.live_timers == []


def test_short_uuid_target_matches_full_form(resolver: Resolver, connection: Connection, adapter) -> None:
    future = resolver.resolve(connection, "180f", "2a19", timeout=10)
    resolver.handle_services(_services(adapter, "0000180f-0000-1000-8000-00805f9b34fb"))
    token = adapter.last("discover_characteristics")[3]
    resolver.handle_characteristics(
        CharacteristicsDiscovered(
            DEVICE.identifier,
            token,
            "0000180f-0000-1000-8000-00805f9b34fb",
            ("00002A19-0000-1000-8000-00805F9B34FB",),
        )
    )
    assert future.result().characteristic_uuid == "00002a19-0000-1000-8000-00805f9b34fb"


def test_missing_status_characteristic_is_optional(resolver: Resolver, connection: Connection, adapter) -> None:
    future = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10, status_id=STATUS_UUID)
    resolver.handle_services(_services(adapter, SERVICE_UUID))
    resolver.handle_characteristics(_characteristics(adapter, CONFIG_UUID))
    assert future.result().status_uuid is None


def test_service_not_found(resolver: Resolver, connection: Connection, adapter) -> None:
    future = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10)
    resolver.handle_services(_services(adapter, "1800", "1801"))
    assert isinstance(future.exception(), ServiceNotFoundError)
    assert adapter.named("discover_characteristics") == []


def test_characteristic_not_found(resolver: Resolver, connection: Connection, adapter) -> None:
    future = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10)
    resolver.handle_services(_services(adapter, SERVICE_UUID))
    resolver.handle_characteristics(_characteristics(adapter, STATUS_UUID))
    assert isinstance(future.exception(), CharacteristicNotFoundError)


def test_platform_discovery_error(resolver: Resolver, connection: Connection, adapter) -> None:
    future = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10)
    resolver.handle_services(_services(adapter, error="GATT error 0x85"))
    exc = future.exception()
    assert isinstance(exc, ServiceNotFoundError)
    assert "0x85" in str(exc)


def test_discovery_times_out(resolver: Resolver, connection: Connection, adapter, executor) -> None:
    future = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10)
    resolver.handle_services(_services(adapter, SERVICE_UUID))
    executor.advance(10)

    assert isinstance(future.exception(), DiscoveryTimeoutError)
    late = _characteristics(adapter, CONFIG_UUID)
    resolver.handle_characteristics(late)
    assert isinstance(future.exception(), DiscoveryTimeoutError)


def test_stale_results_from_previous_resolve_are_ignored(
    resolver: Resolver, connection: Connection, adapter
) -> None:
    first = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10)
    old = _services(adapter, SERVICE_UUID)
    second = resolver.resolve(connection, SERVICE_UUID, CONFIG_UUID, timeout=10)

    resolver.handle_services(old)
    assert first.cancelled()
    assert not second.done()
    assert adapter.named("discover_characteristics") == []
