"""Stable public API for building tooling on top of aromactl.

This module is the supported integration surface for third-party callers.
`Client` offers blocking one-shot operations; `SessionController` is exported
for UIs that keep a long-lived session on their own event loop.
"""

from __future__ import annotations

from aromactl.core.errors import (
    AdapterUnavailableError,
    AromactlError,
    CharacteristicNotFoundError,
    ConfigValidationError,
    ConnectRejectedError,
    ConnectTimeoutError,
    DeliveryFailedError,
    DeviceSelectionError,
    DiscoveryTimeoutError,
    InvalidStateError,
    ProfileLoadError,
    ProfileValidationError,
    ScanAlreadyActiveError,
    ServiceNotFoundError,
    SessionFailedError,
    SessionTimeoutError,
    WriteInProgressError,
)
from aromactl.core.executor import LoopExecutor
from aromactl.core.model import (
    AdapterState,
    ConfigPayload,
    DeviceHandle,
    DeviceProfile,
    SendResult,
    SessionPhase,
    SessionState,
)
from aromactl.core.service import AdapterFactory, AromaService
from aromactl.core.session import SessionController, SessionObserver
from aromactl.core.wire import decode_config, encode_config
from aromactl.transports.ble_gatt import BleakAdapter

__all__ = [
    "AromactlError",
    "AdapterUnavailableError",
    "ScanAlreadyActiveError",
    "ConnectTimeoutError",
    "ConnectRejectedError",
    "ServiceNotFoundError",
    "CharacteristicNotFoundError",
    "DiscoveryTimeoutError",
    "WriteInProgressError",
    "DeliveryFailedError",
    "ConfigValidationError",
    "InvalidStateError",
    "DeviceSelectionError",
    "ProfileLoadError",
    "ProfileValidationError",
    "SessionFailedError",
    "SessionTimeoutError",
    "AdapterState",
    "ConfigPayload",
    "DeviceHandle",
    "DeviceProfile",
    "SendResult",
    "SessionPhase",
    "SessionState",
    "SessionController",
    "SessionObserver",
    "LoopExecutor",
    "BleakAdapter",
    "encode_config",
    "decode_config",
    "Client",
]


class Client:
    """Public client for one-shot diffuser operations.

    Every call runs a complete session (scan, connect, discover, write,
    disconnect) and returns once the device has answered or the call failed.
    """

    def __init__(self, *, adapter_factory: AdapterFactory | None = None) -> None:
        self._service = AromaService(adapter_factory=adapter_factory)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    def list_profiles(self) -> list[DeviceProfile]:
        return self._service.list_profiles()

    def scan(self, *, profile_id: str | None = None, window: float | None = None) -> list[DeviceHandle]:
        return self._service.scan(profile_id=profile_id, window=window)

    def send_config(
        self,
        intensity: int,
        interval: int,
        *,
        profile_id: str | None = None,
        device_hint: str | None = None,
    ) -> SendResult:
        return self._service.send_config(
            intensity,
            interval,
            profile_id=profile_id,
            device_hint=device_hint,
        )
