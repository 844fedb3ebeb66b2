"""Normalization helpers.

Presence records are written by other clients, possibly older or buggy
builds.  Every helper here returns ``None`` for a value it cannot use
instead of raising, so one bad field never poisons the rest of an update.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

# Wire timestamps above this are milliseconds (year 5138 in seconds).
_MS_THRESHOLD = 1e11


def safe_float(value: Any) -> float | None:
    """Finite float, or ``None``; booleans are not numbers on the wire."""
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    return None if parsed is None else int(parsed)


def safe_str(value: Any) -> str | None:
    """Non-empty string form of a scalar; containers are rejected."""
    if value is None or isinstance(value, (Mapping, list, tuple, set)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text or None


def safe_bool(value: Any) -> bool | None:
    """Accept real booleans and 0/1 style numbers only."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize wire timestamps to epoch seconds.

    - Missing, unparsable or <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """
    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    return ts / 1000.0 if ts > _MS_THRESHOLD else ts


def to_epoch_ms(seconds: float) -> int:
    """Convert epoch seconds to the integer milliseconds used on the wire."""
    return int(round(seconds * 1000))


def without_none(data: Mapping[str, Any]) -> dict[str, Any]:
    """Shallow copy of *data* minus ``None`` values (absent means "no value")."""
    return {key: value for key, value in data.items() if value is not None}
