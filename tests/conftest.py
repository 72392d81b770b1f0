from __future__ import annotations

import itertools
from collections import deque
from collections.abc import Callable
from typing import Any

import pytest

from aromactl.core.events import (
    AdapterStateChanged,
    CharacteristicsDiscovered,
    Connected,
    DeviceSighted,
    ServicesDiscovered,
)
from aromactl.core.model import (
    AdapterState,
    ConfigPayload,
    DeviceHandle,
    DeviceProfile,
    GattSpec,
    ScanFilter,
    SessionPhase,
    SessionState,
    Timing,
)
from aromactl.core.session import SessionController, SessionObserver

SERVICE_UUID = "a70a0001-7a6d-4c3e-9b1f-61726f6d6100"
CONFIG_UUID = "a70a0002-7a6d-4c3e-9b1f-61726f6d6100"
STATUS_UUID = "a70a0003-7a6d-4c3e-9b1f-61726f6d6100"


class ManualTimer:
    def __init__(self, when: float, seq: int, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualExecutor:
    """Executor with a fake clock; nothing runs until the test says so."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: deque[tuple[Callable[..., Any], tuple[Any, ...]]] = deque()
        self._timers: list[ManualTimer] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        self._queue.append((callback, args))

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self.now + delay, next(self._seq), callback, args)
        self._timers.append(timer)
        return timer

    @property
    def live_timers(self) -> list[ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def run_pending(self) -> None:
        while self._queue:
            callback, args = self._queue.popleft()
            callback(*args)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        self.run_pending()
        while True:
            due = [t for t in self.live_timers if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
            self.run_pending()
        self._timers = self.live_timers
        self.now = target


class FakeAdapter:
    """Records requests; tests answer them by emitting events."""

    def __init__(self, state: AdapterState = AdapterState.POWERED_ON) -> None:
        self._state = state
        self.sink: Callable[[Any], None] | None = None
        self.calls: list[tuple[Any, ...]] = []
        self.writes: list[tuple[str, str, bytes, int]] = []
        self.fail_disconnect = False
        self.fail_write = False

    @property
    def state(self) -> AdapterState:
        return self._state

    def set_event_sink(self, sink: Callable[[Any], None] | None) -> None:
        self.sink = sink

    def emit(self, event: Any) -> None:
        assert self.sink is not None
        self.sink(event)

    def set_state(self, state: AdapterState) -> None:
        self._state = state
        if self.sink is not None:
            self.emit(AdapterStateChanged(state))

    def start_scan(self, service_uuids: tuple[str, ...] = ()) -> None:
        self.calls.append(("start_scan", service_uuids))

    def stop_scan(self) -> None:
        self.calls.append(("stop_scan",))

    def connect(self, identifier: str, token: int) -> None:
        self.calls.append(("connect", identifier, token))

    def disconnect(self, identifier: str) -> None:
        self.calls.append(("disconnect", identifier))
        if self.fail_disconnect:
            raise RuntimeError("link busy")

    def discover_services(self, identifier: str, token: int) -> None:
        self.calls.append(("discover_services", identifier, token))

    def discover_characteristics(self, identifier: str, service_uuid: str, token: int) -> None:
        self.calls.append(("discover_characteristics", identifier, service_uuid, token))

    def write(
        self,
        identifier: str,
        characteristic_uuid: str,
        data: bytes,
        write_id: int,
        *,
        with_response: bool = True,
    ) -> None:
        if self.fail_write:
            raise RuntimeError("GATT busy")
        self.writes.append((identifier, characteristic_uuid, data, write_id))

    def start_notify(self, identifier: str, characteristic_uuid: str) -> None:
        self.calls.append(("start_notify", identifier, characteristic_uuid))

    def named(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    def last(self, name: str) -> tuple[Any, ...]:
        return self.named(name)[-1]


class RecordingObserver(SessionObserver):
    def __init__(self) -> None:
        self.states: list[SessionState] = []
        self.devices: list[tuple[DeviceHandle, bool]] = []
        self.delivered: list[tuple[ConfigPayload, int]] = []
        self.failed: list[tuple[ConfigPayload, Exception]] = []
        self.rejected: list[tuple[str, Exception]] = []
        self.statuses: list[ConfigPayload] = []

    @property
    def phases(self) -> list[SessionPhase]:
        return [state.phase for state in self.states]

    def state_changed(self, previous: SessionState, current: SessionState) -> None:
        self.states.append(current)

    def device_discovered(self, handle: DeviceHandle, updated: bool) -> None:
        self.devices.append((handle, updated))

    def config_delivered(self, payload: ConfigPayload, attempts: int) -> None:
        self.delivered.append((payload, attempts))

    def config_failed(self, payload: ConfigPayload, error: Exception) -> None:
        self.failed.append((payload, error))

    def intent_rejected(self, intent: str, error: Exception) -> None:
        self.rejected.append((intent, error))

    def status_reported(self, payload: ConfigPayload) -> None:
        self.statuses.append(payload)


def make_profile(**timing: Any) -> DeviceProfile:
    return DeviceProfile(
        id="aromatizador",
        name="Aromatizador BLE",
        match=ScanFilter(name_contains=("aroma",), service_uuids=(SERVICE_UUID,)),
        gatt=GattSpec(
            service_uuid=SERVICE_UUID,
            config_char_uuid=CONFIG_UUID,
            status_char_uuid=STATUS_UUID,
        ),
        timing=Timing(**timing),
    )


@pytest.fixture
def executor() -> ManualExecutor:
    return ManualExecutor()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def profile() -> DeviceProfile:
    return make_profile()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def controller(
    executor: ManualExecutor,
    adapter: FakeAdapter,
    profile: DeviceProfile,
    observer: RecordingObserver,
) -> SessionController:
    session = SessionController(executor, adapter, profile)
    session.add_observer(observer)
    return session


@pytest.fixture
def drive_to_ready(
    executor: ManualExecutor,
    adapter: FakeAdapter,
    controller: SessionController,
) -> Callable[..., str]:
    def _drive(identifier: str = "AA:BB:CC:00:11:22", name: str = "AromaX") -> str:
        controller.start_scan()
        executor.run_pending()
        adapter.emit(DeviceSighted(identifier, name, -48, (SERVICE_UUID,)))
        executor.run_pending()
        controller.select_device(identifier)
        executor.run_pending()
        adapter.emit(Connected(identifier, adapter.last("connect")[2]))
        executor.run_pending()
        adapter.emit(ServicesDiscovered(identifier, adapter.last("discover_services")[2], ("1800", SERVICE_UUID)))
        executor.run_pending()
        adapter.emit(
            CharacteristicsDiscovered(
                identifier,
                adapter.last("discover_characteristics")[3],
                SERVICE_UUID,
                (STATUS_UUID, CONFIG_UUID),
            )
        )
        executor.run_pending()
        assert controller.state.phase is SessionPhase.READY
        return identifier

    return _drive
