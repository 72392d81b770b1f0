"""Core data models used across scanner, session, loader, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from aromactl.core.errors import ConfigValidationError

INTENSITY_RANGE = (0, 100)
INTERVAL_RANGE = (5, 120)


class AdapterState(str, Enum):
    UNKNOWN = "unknown"
    UNSUPPORTED = "unsupported"
    POWERED_OFF = "powered_off"
    POWERED_ON = "powered_on"

    def __str__(self) -> str:
        return self.value


class SessionPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING = "discovering"
    READY = "ready"
    SENDING = "sending"
    DISCONNECTING = "disconnecting"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SessionState:
    """Observable session state; ``reason`` is only set when failed."""

    phase: SessionPhase
    reason: str | None = None

    @classmethod
    def failed(cls, reason: str) -> SessionState:
        return cls(SessionPhase.FAILED, reason)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.phase}: {self.reason}"
        return str(self.phase)


@dataclass(frozen=True)
class ScanFilter:
    name_contains: tuple[str, ...] = ()
    service_uuids: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeviceHandle:
    identifier: str
    name: str
    rssi: int | None
    last_seen: float


def _check_range(label: str, value: object, bounds: tuple[int, int], unit: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"{label} must be an integer, got {value!r}")
    low, high = bounds
    if not low <= value <= high:
        raise ConfigValidationError(f"{label} must be between {low} and {high}{unit}, got {value}")


@dataclass(frozen=True)
class ConfigPayload:
    """Diffuser configuration: intensity in percent, interval in minutes."""

    intensity: int
    interval: int

    def __post_init__(self) -> None:
        _check_range("intensity", self.intensity, INTENSITY_RANGE, "%")
        _check_range("interval", self.interval, INTERVAL_RANGE, " minutes")


DEFAULT_CONFIG = ConfigPayload(intensity=50, interval=30)


@dataclass
class PendingWrite:
    payload: ConfigPayload
    attempt: int
    deadline: float
    write_id: int


@dataclass(frozen=True)
class GattSpec:
    service_uuid: str
    config_char_uuid: str
    status_char_uuid: str | None = None
    write_with_response: bool = True


@dataclass(frozen=True)
class Timing:
    scan_window_s: float = 10.0
    connect_timeout_s: float = 10.0
    discovery_timeout_s: float = 10.0
    ack_timeout_s: float = 5.0
    max_retries: int = 2
    backoff_s: float = 1.0


@dataclass(frozen=True)
class DeviceProfile:
    id: str
    name: str
    match: ScanFilter
    gatt: GattSpec
    timing: Timing = field(default_factory=Timing)
    defaults: ConfigPayload = DEFAULT_CONFIG


@dataclass(frozen=True)
class SendResult:
    device: DeviceHandle
    profile: DeviceProfile
    payload: ConfigPayload
    payload_hex: str
    attempts: int
