"""Single-link connection management with connect timeout."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from concurrent.futures import Future

from aromactl.core.adapter_monitor import AdapterMonitor
from aromactl.core.errors import AdapterUnavailableError, ConnectRejectedError, ConnectTimeoutError
from aromactl.core.events import Connected, ConnectFailed, Disconnected
from aromactl.core.executor import Executor, TimerHandle, cancel_timer, fail, settle
from aromactl.core.model import DeviceHandle
from aromactl.transports.base import BLEAdapter

LOGGER = logging.getLogger(__name__)

LinkLostListener = Callable[["Connection", "str | None"], None]


class Connection:
    """Capability for one established link; inert once closed."""

    def __init__(self, device: DeviceHandle, token: int) -> None:
        self.device = device
        self.token = token
        self.closed = False

    @property
    def identifier(self) -> str:
        return self.device.identifier

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Connection {self.identifier} token={self.token} {state}>"


class _Attempt:
    def __init__(self, device: DeviceHandle, token: int, future: Future[Connection]) -> None:
        self.device = device
        self.token = token
        self.future = future
        self.timer: TimerHandle | None = None


class ConnectionManager:
    def __init__(self, executor: Executor, adapter: BLEAdapter, monitor: AdapterMonitor) -> None:
        self._executor = executor
        self._adapter = adapter
        self._monitor = monitor
        self._tokens = itertools.count(1)
        self._attempt: _Attempt | None = None
        self._connection: Connection | None = None
        self._on_link_lost: LinkLostListener | None = None

    @property
    def connection(self) -> Connection | None:
        return self._connection

    def on_link_lost(self, listener: LinkLostListener | None) -> None:
        self._on_link_lost = listener

    def connect(self, handle: DeviceHandle, timeout: float) -> Future[Connection]:
        future: Future[Connection] = Future()
        try:
            self._monitor.require_powered_on()
        except AdapterUnavailableError as exc:
            future.set_exception(exc)
            return future
        if self._attempt is not None or self._connection is not None:
            # Only one link at a time; the new request supersedes the old one.
            self.cancel_attempt()
            if self._connection is not None:
                self.disconnect(self._connection)

        token = next(self._tokens)
        attempt = _Attempt(handle, token, future)
        self._attempt = attempt
        attempt.timer = self._executor.call_later(timeout, self._timed_out, token, timeout)
        LOGGER.info("Connecting to %s (%s), timeout %.1fs", handle.identifier, handle.name, timeout)
        try:
            self._adapter.connect(handle.identifier, token)
        except Exception as exc:
            self._finish_attempt(attempt)
            fail(future, ConnectRejectedError(f"Connect to {handle.identifier} failed: {exc}"))
        return future

    def cancel_attempt(self) -> None:
        attempt = self._attempt
        if attempt is None:
            return
        self._finish_attempt(attempt)
        attempt.future.cancel()
        self._drop_link(attempt.device.identifier)

    def disconnect(self, connection: Connection) -> None:
        """Close ``connection`` locally; physical teardown failures are only logged."""
        if connection.closed:
            return
        connection.closed = True
        if connection is self._connection:
            self._connection = None
        LOGGER.info("Disconnecting from %s", connection.identifier)
        self._drop_link(connection.identifier)

    def handle_connected(self, event: Connected) -> None:
        attempt = self._attempt
        if attempt is None or attempt.token != event.token or attempt.device.identifier != event.identifier:
            LOGGER.warning(
                "Ignoring stale connection confirmation for %s (token %s)",
                event.identifier,
                event.token,
            )
            if self._connection is None or self._connection.identifier != event.identifier:
                self._drop_link(event.identifier)
            return
        self._finish_attempt(attempt)
        connection = Connection(attempt.device, attempt.token)
        self._connection = connection
        LOGGER.info("Connected to %s", event.identifier)
        if not settle(attempt.future, connection):
            self.disconnect(connection)

    def handle_connect_failed(self, event: ConnectFailed) -> None:
        attempt = self._attempt
        if attempt is None or attempt.token != event.token:
            LOGGER.debug("Ignoring stale connect failure for %s", event.identifier)
            return
        self._finish_attempt(attempt)
        LOGGER.warning("Connection to %s rejected: %s", event.identifier, event.reason)
        fail(attempt.future, ConnectRejectedError(f"Connection to {event.identifier} rejected: {event.reason}"))

    def handle_disconnected(self, event: Disconnected) -> None:
        connection = self._connection
        if connection is None or connection.identifier != event.identifier or connection.token != event.token:
            attempt = self._attempt
            if (
                attempt is not None
                and attempt.device.identifier == event.identifier
                and attempt.token == event.token
            ):
                self._finish_attempt(attempt)
                fail(
                    attempt.future,
                    ConnectRejectedError(f"{event.identifier} disconnected while connecting"),
                )
                return
            LOGGER.debug("Ignoring stale disconnect for %s (token %s)", event.identifier, event.token)
            return
        connection.closed = True
        self._connection = None
        LOGGER.info("Peer %s disconnected (%s)", event.identifier, event.reason or "no reason")
        if self._on_link_lost is not None:
            self._on_link_lost(connection, event.reason)

    def _timed_out(self, token: int, timeout: float) -> None:
        attempt = self._attempt
        if attempt is None or attempt.token != token:
            return
        attempt.timer = None
        self._finish_attempt(attempt)
        LOGGER.warning("Connection to %s timed out after %.1fs", attempt.device.identifier, timeout)
        self._drop_link(attempt.device.identifier)
        fail(
            attempt.future,
            ConnectTimeoutError(f"Timed out connecting to {attempt.device.identifier} after {timeout:g}s"),
        )

    def _finish_attempt(self, attempt: _Attempt) -> None:
        cancel_timer(attempt.timer)
        attempt.timer = None
        if self._attempt is attempt:
            self._attempt = None

    def _drop_link(self, identifier: str) -> None:
        try:
            self._adapter.disconnect(identifier)
        except Exception as exc:
            LOGGER.warning("Physical disconnect of %s failed: %s", identifier, exc)
