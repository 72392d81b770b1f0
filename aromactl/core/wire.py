"""Wire format for the diffuser configuration record.

The device accepts a fixed two-byte record written to the configuration
characteristic::

    byte 0  intensity, unsigned, 0-100 (percent)
    byte 1  interval,  unsigned, 5-120 (minutes)

The status characteristic, when the firmware exposes one, notifies the
active configuration using the same layout.
"""

from __future__ import annotations

import struct

from aromactl.core.errors import ConfigValidationError
from aromactl.core.model import ConfigPayload

RECORD = struct.Struct(">BB")


def encode_config(payload: ConfigPayload) -> bytes:
    return RECORD.pack(payload.intensity, payload.interval)


def decode_config(data: bytes) -> ConfigPayload:
    if len(data) != RECORD.size:
        raise ConfigValidationError(
            f"configuration record must be {RECORD.size} bytes, got {len(data)}"
        )
    intensity, interval = RECORD.unpack(data)
    return ConfigPayload(intensity=intensity, interval=interval)
