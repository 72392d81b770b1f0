"""Domain-specific errors for aromactl."""

from __future__ import annotations


class AromactlError(Exception):
    """Base error for aromactl."""


class ProfileValidationError(AromactlError):
    """Raised when a device profile does not conform to schema or semantics."""


class ProfileLoadError(AromactlError):
    """Raised when loading profile sources fails."""


class ConfigValidationError(AromactlError):
    """Raised when intensity/interval values are out of range."""


class InvalidStateError(AromactlError):
    """Raised when a session intent is not valid in the current state."""


class DeviceSelectionError(AromactlError):
    """Raised when a scan cannot resolve a single target device."""


class SessionTimeoutError(AromactlError):
    """Raised when a blocking client call does not finish in time."""


class AdapterUnavailableError(AromactlError):
    """Raised when the Bluetooth radio is not powered on."""

    def __init__(self, state: object) -> None:
        super().__init__(f"Bluetooth adapter unavailable (state: {state})")
        self.state = state


class ScanAlreadyActiveError(AromactlError):
    """Raised when a scan is requested while another one is running."""


class ConnectTimeoutError(AromactlError):
    """Raised when the platform does not confirm a connection in time."""


class ConnectRejectedError(AromactlError):
    """Raised when the platform reports a failed connection attempt."""


class ServiceNotFoundError(AromactlError):
    """Raised when the configuration service is missing from the device."""


class CharacteristicNotFoundError(AromactlError):
    """Raised when the configuration characteristic is missing."""


class DiscoveryTimeoutError(AromactlError):
    """Raised when GATT discovery does not complete in time."""


class WriteInProgressError(AromactlError):
    """Raised when a write is already pending on a characteristic."""


class DeliveryFailedError(AromactlError):
    """Raised when a configuration write fails after every retry."""

    def __init__(self, last_error: str, attempts: int) -> None:
        super().__init__(f"Configuration delivery failed after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class SessionFailedError(AromactlError):
    """Raised by blocking client calls when the session ends up failed."""
