"""Session state machine composing scanner, connection, discovery, and delivery.

UI code talks to :class:`SessionController` through intents
(``start_scan``, ``select_device``, ``send_config``, ``disconnect``,
``reset``) and listens through :class:`SessionObserver`. Intents and adapter
events are posted to the executor, so every state change happens on one
thread and in arrival order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

from aromactl.core.adapter_monitor import AdapterMonitor
from aromactl.core.connection import Connection, ConnectionManager
from aromactl.core.delivery import Ack, DeliveryPipeline
from aromactl.core.errors import (
    AdapterUnavailableError,
    AromactlError,
    ConfigValidationError,
    DeviceSelectionError,
    InvalidStateError,
    WriteInProgressError,
)
from aromactl.core.events import (
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
from aromactl.core.executor import Executor
from aromactl.core.gatt import same_uuid
from aromactl.core.model import (
    AdapterState,
    ConfigPayload,
    DeviceHandle,
    DeviceProfile,
    SessionPhase,
    SessionState,
)
from aromactl.core.resolver import CharacteristicHandle, Resolver
from aromactl.core.scanner import Scanner, ScanSequence
from aromactl.core.wire import decode_config
from aromactl.transports.base import BLEAdapter

LOGGER = logging.getLogger(__name__)


class SessionObserver:
    """Receives session notifications. Override the hooks you need."""

    def state_changed(self, previous: SessionState, current: SessionState) -> None:
        pass

    def device_discovered(self, handle: DeviceHandle, updated: bool) -> None:
        pass

    def config_delivered(self, payload: ConfigPayload, attempts: int) -> None:
        pass

    def config_failed(self, payload: ConfigPayload, error: AromactlError) -> None:
        pass

    def intent_rejected(self, intent: str, error: AromactlError) -> None:
        pass

    def status_reported(self, payload: ConfigPayload) -> None:
        pass


class SessionController:
    def __init__(self, executor: Executor, adapter: BLEAdapter, profile: DeviceProfile) -> None:
        self.profile = profile
        self._executor = executor
        self._adapter = adapter
        self.monitor = AdapterMonitor(adapter.state)
        self.scanner = Scanner(executor, adapter, self.monitor)
        self.connections = ConnectionManager(executor, adapter, self.monitor)
        self.resolver = Resolver(executor, adapter)
        self.pipeline = DeliveryPipeline(
            executor,
            adapter,
            ack_timeout=profile.timing.ack_timeout_s,
            max_retries=profile.timing.max_retries,
            backoff=profile.timing.backoff_s,
            with_response=profile.gatt.write_with_response,
        )

        self._state = SessionState(SessionPhase.IDLE)
        self._observers: list[SessionObserver] = []
        self._configuration = profile.defaults
        self._scan: ScanSequence | None = None
        self._connection: Connection | None = None
        self._characteristic: CharacteristicHandle | None = None
        self._connect_future: Future[Connection] | None = None
        self._resolve_future: Future[CharacteristicHandle] | None = None
        self._send_future: Future[Ack] | None = None

        self._handlers: dict[type, Callable[[Any], None]] = {
            AdapterStateChanged: self._on_adapter_state,
            DeviceSighted: self.scanner.handle_sighting,
            Connected: self.connections.handle_connected,
            ConnectFailed: self.connections.handle_connect_failed,
            Disconnected: self.connections.handle_disconnected,
            ServicesDiscovered: self.resolver.handle_services,
            CharacteristicsDiscovered: self.resolver.handle_characteristics,
            WriteCompleted: self.pipeline.handle_write_completed,
            StatusNotified: self._on_status,
        }
        self.connections.on_link_lost(self._on_link_lost)
        self.monitor.subscribe(self._on_adapter_transition)
        adapter.set_event_sink(self.dispatch)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def configuration(self) -> ConfigPayload:
        """Most recently requested configuration (profile defaults until then)."""
        return self._configuration

    @property
    def characteristic(self) -> CharacteristicHandle | None:
        return self._characteristic

    def devices(self) -> list[DeviceHandle]:
        return self._scan.devices() if self._scan is not None else []

    def add_observer(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SessionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    # Entry points; safe from any thread.

    def dispatch(self, event: object) -> None:
        self._executor.post(self._handle_event, event)

    def start_scan(self, window: float | None = None) -> None:
        self._executor.post(self._start_scan, window)

    def stop_scan(self) -> None:
        self._executor.post(self._stop_scan)

    def select_device(self, identifier: str) -> None:
        self._executor.post(self._select_device, identifier)

    def send_config(self, intensity: int, interval: int) -> ConfigPayload:
        """Queue a configuration write; range errors raise before anything is queued."""
        payload = ConfigPayload(intensity=intensity, interval=interval)
        self._executor.post(self._send_config, payload)
        return payload

    def disconnect(self) -> None:
        self._executor.post(self._disconnect)

    def reset(self) -> None:
        self._executor.post(self._reset)

    def shutdown(self) -> None:
        self._executor.post(self._shutdown)

    # Executor-side handlers.

    def _handle_event(self, event: object) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            LOGGER.debug("Ignoring unknown adapter event %r", event)
            return
        handler(event)

    def _start_scan(self, window: float | None) -> None:
        if self._state.phase not in (SessionPhase.IDLE, SessionPhase.SCANNING):
            self._reject("start_scan", InvalidStateError(f"Cannot scan while {self._state}"))
            return
        self._scan = None
        try:
            sequence = self.scanner.start_scan(
                self.profile.match,
                window if window is not None else self.profile.timing.scan_window_s,
            )
        except AdapterUnavailableError as exc:
            self._fail(exc)
            return
        self._scan = sequence
        sequence.subscribe(self._on_device, self._on_scan_closed)
        self._transition(SessionPhase.SCANNING)

    def _stop_scan(self) -> None:
        if self._state.phase is not SessionPhase.SCANNING:
            self._reject("stop_scan", InvalidStateError(f"No scan running ({self._state})"))
            return
        self.scanner.stop_scan(reason="stopped")

    def _select_device(self, identifier: str) -> None:
        if self._state.phase is not SessionPhase.SCANNING or self._scan is None:
            self._reject("select_device", InvalidStateError(f"Cannot select a device while {self._state}"))
            return
        handle = self._scan.get(identifier)
        if handle is None:
            self._reject("select_device", DeviceSelectionError(f"Device {identifier} was not found by this scan"))
            return
        self._scan = None
        self.scanner.stop_scan(reason="selected")
        if not self.monitor.powered_on:
            self._fail(AdapterUnavailableError(self.monitor.current_state()))
            return
        self._transition(SessionPhase.CONNECTING)
        future = self.connections.connect(handle, self.profile.timing.connect_timeout_s)
        self._connect_future = future
        future.add_done_callback(self._connect_done)

    def _connect_done(self, future: Future[Connection]) -> None:
        if future.cancelled() or future is not self._connect_future:
            return
        self._connect_future = None
        exc = future.exception()
        if exc is not None:
            self._fail(exc)
            return
        connection = future.result()
        self._connection = connection
        self._transition(SessionPhase.DISCOVERING)
        gatt = self.profile.gatt
        resolving = self.resolver.resolve(
            connection,
            gatt.service_uuid,
            gatt.config_char_uuid,
            self.profile.timing.discovery_timeout_s,
            status_id=gatt.status_char_uuid,
        )
        self._resolve_future = resolving
        resolving.add_done_callback(self._resolve_done)

    def _resolve_done(self, future: Future[CharacteristicHandle]) -> None:
        if future.cancelled() or future is not self._resolve_future:
            return
        self._resolve_future = None
        exc = future.exception()
        if exc is not None:
            self._fail(exc)
            return
        characteristic = future.result()
        self._characteristic = characteristic
        if characteristic.status_uuid is not None:
            try:
                self._adapter.start_notify(characteristic.identifier, characteristic.status_uuid)
            except Exception as notify_exc:
                LOGGER.warning("Could not subscribe to status notifications: %s", notify_exc)
        self._transition(SessionPhase.READY)

    def _send_config(self, payload: ConfigPayload) -> None:
        if self._state.phase is SessionPhase.SENDING:
            self._reject("send_config", WriteInProgressError("A configuration write is already in progress"))
            return
        if self._state.phase is not SessionPhase.READY or self._characteristic is None:
            self._reject("send_config", InvalidStateError(f"Cannot send configuration while {self._state}"))
            return
        self._configuration = payload
        self._transition(SessionPhase.SENDING)
        try:
            future = self.pipeline.send(self._characteristic, payload)
        except WriteInProgressError as exc:
            self._transition(SessionPhase.READY)
            self._reject("send_config", exc)
            return
        self._send_future = future
        future.add_done_callback(self._send_done)

    def _send_done(self, future: Future[Ack]) -> None:
        if future.cancelled() or future is not self._send_future:
            return
        self._send_future = None
        exc = future.exception()
        self._transition(SessionPhase.READY)
        if exc is not None:
            error = exc if isinstance(exc, AromactlError) else AromactlError(str(exc))
            LOGGER.warning("Configuration not delivered: %s", error)
            for observer in list(self._observers):
                observer.config_failed(self._configuration, error)
            return
        ack = future.result()
        for observer in list(self._observers):
            observer.config_delivered(ack.payload, ack.attempts)

    def _disconnect(self) -> None:
        if self._state.phase is SessionPhase.IDLE:
            return
        self._transition(SessionPhase.DISCONNECTING)
        self._cleanup()
        self._transition(SessionPhase.IDLE)

    def _reset(self) -> None:
        self._cleanup()
        self._transition(SessionPhase.IDLE)

    def _shutdown(self) -> None:
        self._reset()
        self._adapter.set_event_sink(None)

    def _on_device(self, handle: DeviceHandle, updated: bool) -> None:
        for observer in list(self._observers):
            observer.device_discovered(handle, updated)

    def _on_scan_closed(self, sequence: ScanSequence, reason: str) -> None:
        if sequence is not self._scan:
            return
        self._scan = None
        if self._state.phase is SessionPhase.SCANNING:
            self._transition(SessionPhase.IDLE)

    def _on_link_lost(self, connection: Connection, reason: str | None) -> None:
        if connection is not self._connection:
            return
        LOGGER.info("Link to %s lost; returning to idle", connection.identifier)
        self._connection = None
        self._cleanup()
        self._transition(SessionPhase.IDLE)

    def _on_adapter_state(self, event: AdapterStateChanged) -> None:
        self.monitor.platform_reported(event.state)

    def _on_adapter_transition(self, previous: AdapterState, current: AdapterState) -> None:
        if current is AdapterState.POWERED_ON:
            return
        if self._state.phase in (SessionPhase.IDLE, SessionPhase.FAILED):
            return
        self._scan = None
        self.scanner.stop_scan(reason="adapter")
        self._fail(AdapterUnavailableError(current))

    def _on_status(self, event: StatusNotified) -> None:
        characteristic = self._characteristic
        if (
            characteristic is None
            or characteristic.status_uuid is None
            or characteristic.identifier != event.identifier
            or not same_uuid(characteristic.status_uuid, event.characteristic_uuid)
        ):
            return
        try:
            payload = decode_config(event.data)
        except ConfigValidationError as exc:
            LOGGER.warning("Ignoring malformed status report %s: %s", event.data.hex(), exc)
            return
        for observer in list(self._observers):
            observer.status_reported(payload)

    def _fail(self, exc: BaseException) -> None:
        LOGGER.error("Session failed: %s", exc)
        self._cleanup()
        self._transition(SessionPhase.FAILED, str(exc))

    def _cleanup(self) -> None:
        """Release every resource the session holds; shared by all teardown paths."""
        self._connect_future = None
        self._resolve_future = None
        self._send_future = None
        self._scan = None
        self.scanner.stop_scan(reason="reset")
        self.pipeline.cancel()
        self.resolver.cancel()
        self.connections.cancel_attempt()
        connection = self._connection
        self._connection = None
        self._characteristic = None
        if connection is not None:
            self.connections.disconnect(connection)

    def _transition(self, phase: SessionPhase, reason: str | None = None) -> None:
        current = SessionState(phase, reason)
        previous = self._state
        if current == previous:
            return
        self._state = current
        LOGGER.info("Session %s -> %s", previous, current)
        for observer in list(self._observers):
            observer.state_changed(previous, current)

    def _reject(self, intent: str, error: AromactlError) -> None:
        LOGGER.warning("Rejected %s: %s", intent, error)
        for observer in list(self._observers):
            observer.intent_rejected(intent, error)
