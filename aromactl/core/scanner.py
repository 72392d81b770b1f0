"""Device discovery with a bounded window and per-identifier de-duplication."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from aromactl.core.adapter_monitor import AdapterMonitor
from aromactl.core.device_match import matches_filter
from aromactl.core.events import DeviceSighted
from aromactl.core.executor import Executor, TimerHandle, cancel_timer
from aromactl.core.model import DeviceHandle, ScanFilter
from aromactl.transports.base import BLEAdapter

LOGGER = logging.getLogger(__name__)

DeviceListener = Callable[[DeviceHandle, bool], None]
CloseListener = Callable[["ScanSequence", str], None]


class ScanSequence:
    """Devices found by one scan, one live entry per identifier.

    Listeners receive ``(handle, updated)``; ``updated`` is true when the
    sighting replaced an existing entry. Subscribing late replays the
    current entries.
    """

    def __init__(self, scan_filter: ScanFilter) -> None:
        self.filter = scan_filter
        self.closed_reason: str | None = None
        self._entries: dict[str, DeviceHandle] = {}
        self._listeners: list[DeviceListener] = []
        self._close_listeners: list[CloseListener] = []

    @property
    def closed(self) -> bool:
        return self.closed_reason is not None

    def subscribe(
        self,
        on_device: DeviceListener,
        on_close: CloseListener | None = None,
    ) -> None:
        self._listeners.append(on_device)
        if on_close is not None:
            self._close_listeners.append(on_close)
        for handle in list(self._entries.values()):
            on_device(handle, False)
        if self.closed and on_close is not None:
            on_close(self, self.closed_reason or "")

    def get(self, identifier: str) -> DeviceHandle | None:
        return self._entries.get(identifier)

    def devices(self) -> list[DeviceHandle]:
        return sorted(
            self._entries.values(),
            key=lambda h: (h.rssi is None, -(h.rssi or 0), h.identifier),
        )

    def __iter__(self) -> Iterator[DeviceHandle]:
        return iter(self.devices())

    def __len__(self) -> int:
        return len(self._entries)

    def _offer(self, handle: DeviceHandle) -> None:
        updated = handle.identifier in self._entries
        self._entries[handle.identifier] = handle
        for listener in list(self._listeners):
            listener(handle, updated)

    def _close(self, reason: str) -> None:
        if self.closed:
            return
        self.closed_reason = reason
        for listener in list(self._close_listeners):
            listener(self, reason)


class Scanner:
    def __init__(self, executor: Executor, adapter: BLEAdapter, monitor: AdapterMonitor) -> None:
        self._executor = executor
        self._adapter = adapter
        self._monitor = monitor
        self._active: ScanSequence | None = None
        self._timer: TimerHandle | None = None

    @property
    def active(self) -> ScanSequence | None:
        return self._active

    def start_scan(self, scan_filter: ScanFilter, window: float) -> ScanSequence:
        """Start a scan, restarting (and closing) any scan already running."""
        self._monitor.require_powered_on()
        if self._active is not None:
            LOGGER.info("Restarting active scan")
            self.stop_scan(reason="restarted")

        sequence = ScanSequence(scan_filter)
        self._active = sequence
        self._timer = self._executor.call_later(window, self._window_expired, sequence)
        LOGGER.info("Scanning for %.1fs (names=%s services=%s)", window, scan_filter.name_contains, scan_filter.service_uuids)
        # The platform filter is service-only; name matches must see every advertisement.
        platform_uuids = () if scan_filter.name_contains else scan_filter.service_uuids
        self._adapter.start_scan(platform_uuids)
        return sequence

    def stop_scan(self, reason: str = "stopped") -> None:
        sequence = self._active
        if sequence is None:
            return
        self._active = None
        cancel_timer(self._timer)
        self._timer = None
        try:
            self._adapter.stop_scan()
        except Exception as exc:
            LOGGER.warning("Platform failed to stop scan: %s", exc)
        LOGGER.info("Scan ended (%s) with %d device(s)", reason, len(sequence))
        sequence._close(reason)

    def handle_sighting(self, event: DeviceSighted) -> None:
        sequence = self._active
        if sequence is None:
            return
        previous = sequence.get(event.identifier)
        if previous is None and not matches_filter(event.name, event.service_uuids, sequence.filter):
            return
        name = event.name or (previous.name if previous else "") or "<unknown-device>"
        handle = DeviceHandle(
            identifier=event.identifier,
            name=name,
            rssi=event.rssi if event.rssi is not None else (previous.rssi if previous else None),
            last_seen=self._executor.time(),
        )
        LOGGER.debug("Sighted %s (%s) rssi=%s", handle.identifier, handle.name, handle.rssi)
        sequence._offer(handle)

    def _window_expired(self, sequence: ScanSequence) -> None:
        if sequence is self._active:
            self._timer = None
            self.stop_scan(reason="window")
