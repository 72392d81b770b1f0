"""Platform adapter interface."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from aromactl.core.events import AdapterEvent
from aromactl.core.model import AdapterState

EventSink = Callable[[AdapterEvent], None]


class BLEAdapter(Protocol):
    """Capability the session needs from a platform Bluetooth stack.

    Requests return immediately; outcomes are delivered as events to the
    sink installed with :meth:`set_event_sink`, from any thread.
    """

    @property
    def state(self) -> AdapterState:
        """Radio state as last reported by the platform."""

    def set_event_sink(self, sink: EventSink | None) -> None:
        """Install (or clear) the receiver for adapter events."""

    def start_scan(self, service_uuids: tuple[str, ...] = ()) -> None:
        """Begin discovery, reporting every advertisement as ``DeviceSighted``."""

    def stop_scan(self) -> None:
        """Halt discovery. Safe to call when no scan is running."""

    def connect(self, identifier: str, token: int) -> None:
        """Open a link; answered by ``Connected`` or ``ConnectFailed``."""

    def disconnect(self, identifier: str) -> None:
        """Drop the link. May raise if the platform refuses."""

    def discover_services(self, identifier: str, token: int) -> None:
        """Answered by ``ServicesDiscovered``."""

    def discover_characteristics(self, identifier: str, service_uuid: str, token: int) -> None:
        """Answered by ``CharacteristicsDiscovered``."""

    def write(
        self,
        identifier: str,
        characteristic_uuid: str,
        data: bytes,
        write_id: int,
        *,
        with_response: bool = True,
    ) -> None:
        """Write a value; answered by ``WriteCompleted`` carrying ``write_id``."""

    def start_notify(self, identifier: str, characteristic_uuid: str) -> None:
        """Subscribe to a characteristic; values arrive as ``StatusNotified``."""


class ManagedAdapter(BLEAdapter, Protocol):
    """Adapter with an explicit lifecycle, as used by the blocking client."""

    async def probe(self) -> AdapterState:
        """Query the radio and report its state through the event sink."""

    async def aclose(self) -> None:
        """Stop scanning and drop every link."""
