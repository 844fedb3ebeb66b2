"""Capacity-bounded id histories.

Both classes are insertion-ordered and evict oldest-first, so memory stays
bounded no matter how many messages a long session sees.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Iterator

from areasync._scheduler import Scheduler


class BoundedHistory:
    """Fixed-capacity insertion-ordered set."""

    __slots__ = ("_capacity", "_items")

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: OrderedDict[str, None] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def add(self, item: str) -> None:
        """Insert *item*; re-adding an existing item does not refresh its age."""
        if item in self._items:
            return
        self._items[item] = None
        while len(self._items) > self._capacity:
            self._items.popitem(last=False)

    def discard(self, item: str) -> None:
        self._items.pop(item, None)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __repr__(self) -> str:
        return f"BoundedHistory(capacity={self._capacity}, size={len(self._items)})"


class ExpiringIdSet:
    """Bounded id set whose entries are dropped after ``ttl`` seconds.

    Expiry runs on cancellable timers owned by *scheduler*, so clearing the
    set (or cancelling the scheduler) leaves nothing pending.
    """

    def __init__(self, ttl: float, scheduler: Scheduler, *, capacity: int = 64) -> None:
        self._ttl = ttl
        self._scheduler = scheduler
        self._history = BoundedHistory(capacity)
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def add(self, item: str) -> None:
        previous = self._timers.pop(item, None)
        if previous is not None:
            self._scheduler.cancel(previous)
        self._history.discard(item)
        self._history.add(item)
        self._timers[item] = self._scheduler.call_later(self._ttl, self._expire, item)
        # Ids pushed out by capacity no longer need their timers.
        for stale in [key for key in self._timers if key not in self._history]:
            self._scheduler.cancel(self._timers.pop(stale))

    def pop(self, item: str) -> bool:
        """Remove *item*, returning whether it was present."""
        present = item in self._history
        self._history.discard(item)
        timer = self._timers.pop(item, None)
        if timer is not None:
            self._scheduler.cancel(timer)
        return present

    def clear(self) -> None:
        for timer in self._timers.values():
            self._scheduler.cancel(timer)
        self._timers.clear()
        self._history.clear()

    def _expire(self, item: str) -> None:
        self._timers.pop(item, None)
        self._history.discard(item)

    def __contains__(self, item: object) -> bool:
        return item in self._history

    def __len__(self) -> int:
        return len(self._history)
