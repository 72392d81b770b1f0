"""UUID helpers shared by the resolver, scanner, and profile loader."""

from __future__ import annotations

import re

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_BASE_UUID_SUFFIX = "-0000-1000-8000-00805f9b34fb"


def normalize_uuid(value: str) -> str:
    """Return the lowercase 128-bit form, expanding 16/32-bit short UUIDs."""
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ValueError(f"not a 16-bit, 32-bit, or 128-bit UUID: {value!r}")
    if len(normalized) == 4:
        return f"0000{normalized}{_BASE_UUID_SUFFIX}"
    if len(normalized) == 8:
        return f"{normalized}{_BASE_UUID_SUFFIX}"
    return normalized


def same_uuid(left: str, right: str) -> bool:
    try:
        return normalize_uuid(left) == normalize_uuid(right)
    except ValueError:
        return False
