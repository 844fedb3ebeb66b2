"""Helpers for safe debug logging.

Presence records carry user-written chat text, and store configs carry
broker credentials.  :func:`redact_for_log` masks both before a payload is
emitted in DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_MASKED_KEYS: frozenset[str] = frozenset({"password", "authorization", "cookie", "token"})

# User-written content: only its length is logged.
_CONTENT_KEYS: frozenset[str] = frozenset({"chat", "text"})

_MAX_DEPTH = 10


def _redact_entry(key: str, item: Any, max_string: int, depth: int) -> Any:
    lowered = key.lower()
    if lowered in _MASKED_KEYS:
        return None if item is None else "<redacted>"
    if lowered in _CONTENT_KEYS and isinstance(item, str):
        return f"<text:{len(item)}c>"
    return redact_for_log(item, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 128, _depth: int = 0) -> Any:
    """Return a copy of *value* with credentials and chat text masked."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}...<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {str(key): _redact_entry(str(key), item, max_string, _depth) for key, item in value.items()}
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
