"""Service layer used by the CLI and the public client API.

Each call builds a fresh session on its own event loop, drives it to
completion and tears it down again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from aromactl.core.device_match import matches_hint
from aromactl.core.errors import (
    AromactlError,
    DeviceSelectionError,
    SessionFailedError,
    SessionTimeoutError,
)
from aromactl.core.executor import LoopExecutor
from aromactl.core.model import (
    ConfigPayload,
    DeviceHandle,
    DeviceProfile,
    SendResult,
    SessionPhase,
    SessionState,
)
from aromactl.core.profile_loader import load_profiles
from aromactl.core.session import SessionController, SessionObserver
from aromactl.core.wire import encode_config
from aromactl.transports.base import ManagedAdapter
from aromactl.transports.ble_gatt import BleakAdapter

LOGGER = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "aromatizador"
_GRACE_S = 2.0

T = TypeVar("T")

_LINKED_PHASES = frozenset(
    {SessionPhase.CONNECTING, SessionPhase.DISCOVERING, SessionPhase.READY, SessionPhase.SENDING}
)

AdapterFactory = Callable[[asyncio.AbstractEventLoop], ManagedAdapter]


class _SessionWaiter(SessionObserver):
    """Bridges session notifications to asyncio futures on the same loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._state_waiters: list[tuple[frozenset[SessionPhase], asyncio.Future[SessionState]]] = []
        self._device_waiters: list[tuple[str | None, asyncio.Future[DeviceHandle]]] = []
        self.devices: dict[str, DeviceHandle] = {}
        self.delivery: asyncio.Future[int] = loop.create_future()

    def wait_for(self, *phases: SessionPhase) -> asyncio.Future[SessionState]:
        future: asyncio.Future[SessionState] = self._loop.create_future()
        self._state_waiters.append((frozenset(phases), future))
        return future

    def wait_device(self, hint: str | None) -> asyncio.Future[DeviceHandle]:
        future: asyncio.Future[DeviceHandle] = self._loop.create_future()
        for handle in self.devices.values():
            if hint is None or matches_hint(handle, hint):
                future.set_result(handle)
                return future
        self._device_waiters.append((hint, future))
        return future

    def state_changed(self, previous: SessionState, current: SessionState) -> None:
        failed = current.phase is SessionPhase.FAILED
        link_lost = current.phase is SessionPhase.IDLE and previous.phase in _LINKED_PHASES
        for phases, future in list(self._state_waiters):
            if future.done():
                continue
            if failed:
                future.set_exception(SessionFailedError(current.reason or "session failed"))
            elif current.phase in phases:
                future.set_result(current)
            elif link_lost:
                future.set_exception(SessionFailedError("Link to the device was lost"))
        if link_lost and not self.delivery.done():
            self.delivery.set_exception(SessionFailedError("Link to the device was lost"))
        scan_ended = previous.phase is SessionPhase.SCANNING and current.phase is not SessionPhase.CONNECTING
        if not (failed or scan_ended):
            return
        for hint, future in self._device_waiters:
            if future.done():
                continue
            if failed:
                future.set_exception(SessionFailedError(current.reason or "session failed"))
            else:
                target = f" matching '{hint}'" if hint else ""
                future.set_exception(DeviceSelectionError(f"No device{target} found during scan"))

    def device_discovered(self, handle: DeviceHandle, updated: bool) -> None:
        self.devices[handle.identifier] = handle
        for hint, future in self._device_waiters:
            if not future.done() and (hint is None or matches_hint(handle, hint)):
                future.set_result(handle)

    def config_delivered(self, payload: ConfigPayload, attempts: int) -> None:
        if not self.delivery.done():
            self.delivery.set_result(attempts)

    def config_failed(self, payload: ConfigPayload, error: AromactlError) -> None:
        if not self.delivery.done():
            self.delivery.set_exception(error)

    def intent_rejected(self, intent: str, error: AromactlError) -> None:
        for _, future in [*self._state_waiters, *self._device_waiters]:
            if not future.done():
                future.set_exception(error)
        if not self.delivery.done():
            self.delivery.set_exception(error)


class AromaService:
    def __init__(self, *, adapter_factory: AdapterFactory | None = None) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self._adapter_factory: AdapterFactory = adapter_factory or BleakAdapter

    def list_profiles(self) -> list[DeviceProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def get_profile(self, profile_id: str | None = None) -> DeviceProfile:
        if profile_id is None:
            if DEFAULT_PROFILE_ID in self.profiles:
                return self.profiles[DEFAULT_PROFILE_ID]
            if len(self.profiles) == 1:
                return next(iter(self.profiles.values()))
            raise DeviceSelectionError("Multiple profiles available. Use --profile to choose one.")
        profile = self.profiles.get(profile_id)
        if profile is None:
            raise DeviceSelectionError(
                f"Unknown profile '{profile_id}'. Use 'aromactl profiles' to inspect available profiles."
            )
        return profile

    def encode(self, intensity: int, interval: int) -> bytes:
        return encode_config(ConfigPayload(intensity=intensity, interval=interval))

    def scan(self, *, profile_id: str | None = None, window: float | None = None) -> list[DeviceHandle]:
        profile = self.get_profile(profile_id)
        return asyncio.run(self._scan(profile, window))

    def send_config(
        self,
        intensity: int,
        interval: int,
        *,
        profile_id: str | None = None,
        device_hint: str | None = None,
    ) -> SendResult:
        payload = ConfigPayload(intensity=intensity, interval=interval)
        profile = self.get_profile(profile_id)
        return asyncio.run(self._send(profile, payload, device_hint))

    @asynccontextmanager
    async def _session(self, profile: DeviceProfile) -> AsyncIterator[tuple[SessionController, _SessionWaiter]]:
        loop = asyncio.get_running_loop()
        adapter = self._adapter_factory(loop)
        await adapter.probe()
        controller = SessionController(LoopExecutor(loop), adapter, profile)
        waiter = _SessionWaiter(loop)
        controller.add_observer(waiter)
        try:
            yield controller, waiter
        finally:
            controller.shutdown()
            await asyncio.sleep(0)
            await adapter.aclose()

    async def _scan(self, profile: DeviceProfile, window: float | None) -> list[DeviceHandle]:
        window = window if window is not None else profile.timing.scan_window_s
        async with self._session(profile) as (controller, waiter):
            finished = waiter.wait_for(SessionPhase.IDLE)
            controller.start_scan(window)
            await self._bounded(finished, window + _GRACE_S)
        return sorted(
            waiter.devices.values(),
            key=lambda h: (h.rssi is None, -(h.rssi or 0), h.identifier),
        )

    async def _send(self, profile: DeviceProfile, payload: ConfigPayload, device_hint: str | None) -> SendResult:
        timing = profile.timing
        async with self._session(profile) as (controller, waiter):
            found = waiter.wait_device(device_hint)
            controller.start_scan()
            device = await self._bounded(found, timing.scan_window_s + _GRACE_S)

            ready = waiter.wait_for(SessionPhase.READY)
            controller.select_device(device.identifier)
            await self._bounded(ready, timing.connect_timeout_s + timing.discovery_timeout_s + _GRACE_S)

            controller.send_config(payload.intensity, payload.interval)
            retries = timing.max_retries
            budget = timing.ack_timeout_s * (retries + 1) + timing.backoff_s * retries * (retries + 1) / 2
            attempts = await self._bounded(waiter.delivery, budget + _GRACE_S)
            controller.disconnect()

        return SendResult(
            device=device,
            profile=profile,
            payload=payload,
            payload_hex=encode_config(payload).hex(),
            attempts=attempts,
        )

    async def _bounded(self, future: asyncio.Future[T], timeout: float) -> T:
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            raise SessionTimeoutError(f"Timed out after {timeout:g}s waiting for the device") from exc
