"""Store event kinds.

All presence store implementations report child-record changes with one
of these kinds.  Only the reconciler interprets them.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any


class StoreEventKind(StrEnum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


StoreCallback = Callable[[StoreEventKind, str, dict[str, Any] | None], None]
"""``callback(kind, session_id, record)``; ``record`` is ``None`` for removals."""

Unsubscribe = Callable[[], None]
