"""Two-phase GATT discovery of the configuration characteristic."""

from __future__ import annotations

import itertools
import logging
from concurrent.futures import Future
from dataclasses import dataclass

from aromactl.core.connection import Connection
from aromactl.core.errors import (
    CharacteristicNotFoundError,
    DiscoveryTimeoutError,
    ServiceNotFoundError,
)
from aromactl.core.events import CharacteristicsDiscovered, ServicesDiscovered
from aromactl.core.executor import Executor, TimerHandle, cancel_timer, fail, settle
from aromactl.core.gatt import normalize_uuid, same_uuid
from aromactl.transports.base import BLEAdapter

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CharacteristicHandle:
    connection: Connection
    service_uuid: str
    characteristic_uuid: str
    status_uuid: str | None = None

    @property
    def identifier(self) -> str:
        return self.connection.identifier


class _Discovery:
    def __init__(
        self,
        connection: Connection,
        token: int,
        service_uuid: str,
        characteristic_uuid: str,
        status_uuid: str | None,
    ) -> None:
        self.connection = connection
        self.token = token
        self.service_uuid = service_uuid
        self.characteristic_uuid = characteristic_uuid
        self.status_uuid = status_uuid
        self.future: Future[CharacteristicHandle] = Future()
        self.timer: TimerHandle | None = None


class Resolver:
    def __init__(self, executor: Executor, adapter: BLEAdapter) -> None:
        self._executor = executor
        self._adapter = adapter
        self._tokens = itertools.count(1)
        self._discovery: _Discovery | None = None

    def resolve(
        self,
        connection: Connection,
        service_id: str,
        characteristic_id: str,
        timeout: float,
        status_id: str | None = None,
    ) -> Future[CharacteristicHandle]:
        """Locate ``characteristic_id`` inside ``service_id`` on ``connection``.

        Discovery runs services first, then the characteristics of the target
        service. Results are matched by UUID, never by position.
        """
        self.cancel()
        discovery = _Discovery(
            connection,
            next(self._tokens),
            normalize_uuid(service_id),
            normalize_uuid(characteristic_id),
            normalize_uuid(status_id) if status_id else None,
        )
        self._discovery = discovery
        discovery.timer = self._executor.call_later(timeout, self._timed_out, discovery.token, timeout)
        LOGGER.info("Discovering services on %s", connection.identifier)
        try:
            self._adapter.discover_services(connection.identifier, discovery.token)
        except Exception as exc:
            self._finish(discovery)
            fail(discovery.future, ServiceNotFoundError(f"Service discovery failed: {exc}"))
        return discovery.future

    def cancel(self) -> None:
        discovery = self._discovery
        if discovery is None:
            return
        self._finish(discovery)
        discovery.future.cancel()

    def handle_services(self, event: ServicesDiscovered) -> None:
        discovery = self._current(event.identifier, event.token)
        if discovery is None:
            return
        if event.error:
            self._finish(discovery)
            fail(discovery.future, ServiceNotFoundError(f"Service discovery failed: {event.error}"))
            return
        LOGGER.debug("Services on %s: %s", event.identifier, ", ".join(event.service_uuids))
        if not any(same_uuid(uuid, discovery.service_uuid) for uuid in event.service_uuids):
            self._finish(discovery)
            fail(
                discovery.future,
                ServiceNotFoundError(f"Service {discovery.service_uuid} not found on {event.identifier}"),
            )
            return
        try:
            self._adapter.discover_characteristics(event.identifier, discovery.service_uuid, discovery.token)
        except Exception as exc:
            self._finish(discovery)
            fail(discovery.future, CharacteristicNotFoundError(f"Characteristic discovery failed: {exc}"))

    def handle_characteristics(self, event: CharacteristicsDiscovered) -> None:
        discovery = self._current(event.identifier, event.token)
        if discovery is None or not same_uuid(event.service_uuid, discovery.service_uuid):
            return
        self._finish(discovery)
        if event.error:
            fail(
                discovery.future,
                CharacteristicNotFoundError(f"Characteristic discovery failed: {event.error}"),
            )
            return
        found = event.characteristic_uuids
        if not any(same_uuid(uuid, discovery.characteristic_uuid) for uuid in found):
            fail(
                discovery.future,
                CharacteristicNotFoundError(
                    f"Characteristic {discovery.characteristic_uuid} not found in service {discovery.service_uuid}"
                ),
            )
            return
        status_uuid = None
        if discovery.status_uuid is not None:
            if any(same_uuid(uuid, discovery.status_uuid) for uuid in found):
                status_uuid = discovery.status_uuid
            else:
                LOGGER.info("Status characteristic %s not present; continuing without it", discovery.status_uuid)
        LOGGER.info("Resolved configuration characteristic on %s", event.identifier)
        settle(
            discovery.future,
            CharacteristicHandle(
                connection=discovery.connection,
                service_uuid=discovery.service_uuid,
                characteristic_uuid=discovery.characteristic_uuid,
                status_uuid=status_uuid,
            ),
        )

    def _current(self, identifier: str, token: int) -> _Discovery | None:
        discovery = self._discovery
        if discovery is None or discovery.token != token or discovery.connection.identifier != identifier:
            LOGGER.debug("Ignoring stale discovery result for %s (token %s)", identifier, token)
            return None
        return discovery

    def _timed_out(self, token: int, timeout: float) -> None:
        discovery = self._discovery
        if discovery is None or discovery.token != token:
            return
        discovery.timer = None
        self._finish(discovery)
        LOGGER.warning("GATT discovery on %s timed out", discovery.connection.identifier)
        fail(
            discovery.future,
            DiscoveryTimeoutError(
                f"GATT discovery on {discovery.connection.identifier} did not finish within {timeout:g}s"
            ),
        )

    def _finish(self, discovery: _Discovery) -> None:
        cancel_timer(discovery.timer)
        discovery.timer = None
        if self._discovery is discovery:
            self._discovery = None
