"""In-process presence store.

Behaves like a realtime database child listener: deliveries are
asynchronous (scheduled on the loop), new subscribers get an ``added``
replay of existing children, and disconnect hooks delete records when a
client drops without leaving.  Used by tests and single-process
simulations.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from areasync._constants import EPHEMERAL_CHAT_FIELDS, MESSAGE_ID_FIELD, SERVER_TIMESTAMP_FIELD
from areasync.exceptions import PresenceStoreError
from areasync.state.events import StoreCallback, StoreEventKind, Unsubscribe

_logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _Subscription:
    area_id: str
    callback: StoreCallback
    active: bool = True


class InMemoryPresenceStore:
    """Dictionary-backed :class:`~areasync.store.base.PresenceStore`.

    Parameters
    ----------
    clock
        Epoch-seconds clock used for the ``ts`` server timestamp.
    write_latency
        Simulated seconds each write takes before it is applied.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        write_latency: float = 0.0,
    ) -> None:
        self._clock = clock
        self._write_latency = write_latency
        self._areas: dict[str, dict[str, dict[str, Any]]] = {}
        self._subscriptions: list[_Subscription] = []
        self._disconnect_hooks: set[tuple[str, str]] = set()
        self._last_ts = 0
        self.fail_operations: set[str] = set()
        self.operations: list[tuple[str, str, str]] = []

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    def get(self, area_id: str, session_id: str) -> dict[str, Any] | None:
        record = self._areas.get(area_id, {}).get(session_id)
        return copy.deepcopy(record) if record is not None else None

    def count(self, operation: str) -> int:
        return sum(1 for op, _, _ in self.operations if op == operation)

    def has_disconnect_hook(self, area_id: str, session_id: str) -> bool:
        return (area_id, session_id) in self._disconnect_hooks

    @property
    def subscriber_count(self) -> int:
        return sum(1 for sub in self._subscriptions if sub.active)

    # ------------------------------------------------------------------
    # PresenceStore
    # ------------------------------------------------------------------

    async def write(self, area_id: str, session_id: str, record: dict[str, Any]) -> None:
        await self._begin("write", area_id, session_id)
        children = self._areas.setdefault(area_id, {})
        kind = StoreEventKind.CHANGED if session_id in children else StoreEventKind.ADDED
        stored = copy.deepcopy(record)
        stored[SERVER_TIMESTAMP_FIELD] = self._next_ts()
        children[session_id] = stored
        self._notify(area_id, kind, session_id, stored)

    async def merge(self, area_id: str, session_id: str, partial: dict[str, Any]) -> None:
        await self._begin("merge", area_id, session_id)
        children = self._areas.setdefault(area_id, {})
        existing = children.get(session_id)
        kind = StoreEventKind.ADDED if existing is None else StoreEventKind.CHANGED
        merged = dict(existing or {})
        merged.update(copy.deepcopy(partial))
        merged[SERVER_TIMESTAMP_FIELD] = self._next_ts()
        children[session_id] = merged
        self._notify(area_id, kind, session_id, merged)

    async def remove(self, area_id: str, session_id: str) -> None:
        await self._begin("remove", area_id, session_id)
        self._disconnect_hooks.discard((area_id, session_id))
        self._remove_now(area_id, session_id)

    async def register_remove_on_disconnect(self, area_id: str, session_id: str) -> None:
        await self._begin("register_remove_on_disconnect", area_id, session_id)
        self._disconnect_hooks.add((area_id, session_id))

    async def transactional_clear(self, area_id: str, session_id: str, expected_message_id: str) -> bool:
        await self._begin("transactional_clear", area_id, session_id)
        current = self._areas.get(area_id, {}).get(session_id)
        if current is None or current.get(MESSAGE_ID_FIELD) != expected_message_id:
            return False
        for field_name in EPHEMERAL_CHAT_FIELDS:
            current[field_name] = None
        current[SERVER_TIMESTAMP_FIELD] = self._next_ts()
        self._notify(area_id, StoreEventKind.CHANGED, session_id, current)
        return True

    def subscribe(self, area_id: str, callback: StoreCallback) -> Unsubscribe:
        subscription = _Subscription(area_id=area_id, callback=callback)
        self._subscriptions.append(subscription)
        loop = asyncio.get_running_loop()
        for session_id, record in self._areas.get(area_id, {}).items():
            loop.call_soon(self._deliver, subscription, StoreEventKind.ADDED, session_id, copy.deepcopy(record))

        def _unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def drop_connection(self, session_id: str, *, propagation_delay: float = 0.0) -> None:
        """Simulate *session_id*'s client vanishing without leaving.

        Every disconnect hook registered for the session fires after
        *propagation_delay* seconds.
        """
        loop = asyncio.get_running_loop()
        hooks = [hook for hook in self._disconnect_hooks if hook[1] == session_id]
        for hook in hooks:
            self._disconnect_hooks.discard(hook)
            loop.call_later(propagation_delay, self._remove_now, *hook)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _begin(self, operation: str, area_id: str, session_id: str) -> None:
        self.operations.append((operation, area_id, session_id))
        if self._write_latency > 0:
            await asyncio.sleep(self._write_latency)
        if operation in self.fail_operations:
            raise PresenceStoreError(
                f"Simulated {operation} failure",
                operation=operation,
                session_id=session_id,
            )

    def _next_ts(self) -> int:
        now_ms = int(self._clock() * 1000)
        self._last_ts = max(self._last_ts + 1, now_ms)
        return self._last_ts

    def _remove_now(self, area_id: str, session_id: str) -> None:
        children = self._areas.get(area_id, {})
        if children.pop(session_id, None) is None:
            return
        self._notify(area_id, StoreEventKind.REMOVED, session_id, None)

    def _notify(
        self,
        area_id: str,
        kind: StoreEventKind,
        session_id: str,
        record: dict[str, Any] | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        for subscription in list(self._subscriptions):
            if subscription.area_id != area_id:
                continue
            payload = copy.deepcopy(record) if record is not None else None
            loop.call_soon(self._deliver, subscription, kind, session_id, payload)

    @staticmethod
    def _deliver(
        subscription: _Subscription,
        kind: StoreEventKind,
        session_id: str,
        record: dict[str, Any] | None,
    ) -> None:
        if not subscription.active:
            return
        try:
            subscription.callback(kind, session_id, record)
        except Exception:
            _logger.debug("Store subscriber failed for %s %s", kind, session_id, exc_info=True)
