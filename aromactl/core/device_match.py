"""Advertisement-to-filter matching logic."""

from __future__ import annotations

from collections.abc import Iterable

from aromactl.core.gatt import same_uuid
from aromactl.core.model import DeviceHandle, ScanFilter


def _name_contains_match(device_name: str | None, scan_filter: ScanFilter) -> bool:
    if not device_name:
        return False
    lower_name = device_name.lower()
    return any(token.lower() in lower_name for token in scan_filter.name_contains)


def _service_match(advertised: Iterable[str], scan_filter: ScanFilter) -> bool:
    return any(
        same_uuid(uuid, wanted)
        for uuid in advertised
        for wanted in scan_filter.service_uuids
    )


def matches_filter(device_name: str | None, advertised: Iterable[str], scan_filter: ScanFilter) -> bool:
    if not scan_filter.name_contains and not scan_filter.service_uuids:
        return True
    return _name_contains_match(device_name, scan_filter) or _service_match(advertised, scan_filter)


def matches_hint(device: DeviceHandle, hint: str) -> bool:
    lowered = hint.lower()
    return (
        device.identifier.lower() == lowered
        or lowered in device.identifier.lower()
        or lowered in device.name.lower()
    )
