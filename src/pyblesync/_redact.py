"""Helpers for safe debug logging.

Broker credentials, the client token and radio addresses of test devices
all pass through DEBUG logs. :func:`redact_for_log` hides the first two
and shortens addresses to their last octet.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset({"password", "username", "token", "client_id", "clientid"})
_ADDRESS_KEYS: frozenset[str] = frozenset({"source_id", "address", "mac"})


def mask_address(address: str) -> str:
    """``AA:BB:CC:DD:EE:FF`` -> ``**:EE:FF``; other shapes keep only four characters."""
    parts = address.split(":")
    if len(parts) > 2:
        return "**:" + ":".join(parts[-2:])
    return f"**{address[-4:]}"


def redact_for_log(value: Any, *, max_string: int = 256, _depth: int = 0) -> Any:
    """Return a copy of *value* with secrets and device addresses masked."""
    if _depth > 10:
        return "<max-depth>"

    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SECRET_KEYS:
                result[key] = "<redacted>"
            elif lowered in _ADDRESS_KEYS and isinstance(v, str):
                result[key] = mask_address(v)
            else:
                result[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return result

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, Sequence):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
