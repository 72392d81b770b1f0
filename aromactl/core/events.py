"""Event messages delivered by a platform adapter into the session queue.

Every request the session makes carries an integer correlation token (or
write id); the matching event echoes it back so stale results can be told
apart from current ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from aromactl.core.model import AdapterState


@dataclass(frozen=True)
class AdapterStateChanged:
    state: AdapterState


@dataclass(frozen=True)
class DeviceSighted:
    identifier: str
    name: str | None
    rssi: int | None
    service_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Connected:
    identifier: str
    token: int


@dataclass(frozen=True)
class ConnectFailed:
    identifier: str
    token: int
    reason: str


@dataclass(frozen=True)
class Disconnected:
    identifier: str
    token: int
    reason: str | None = None


@dataclass(frozen=True)
class ServicesDiscovered:
    identifier: str
    token: int
    service_uuids: tuple[str, ...]
    error: str | None = None


@dataclass(frozen=True)
class CharacteristicsDiscovered:
    identifier: str
    token: int
    service_uuid: str
    characteristic_uuids: tuple[str, ...]
    error: str | None = None


@dataclass(frozen=True)
class WriteCompleted:
    identifier: str
    write_id: int
    error: str | None = None


@dataclass(frozen=True)
class StatusNotified:
    identifier: str
    characteristic_uuid: str
    data: bytes


AdapterEvent = Union[
    AdapterStateChanged,
    DeviceSighted,
    Connected,
    ConnectFailed,
    Disconnected,
    ServicesDiscovered,
    CharacteristicsDiscovered,
    WriteCompleted,
    StatusNotified,
]
