"""Periodic removal of sessions that stopped updating."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from areasync._scheduler import Scheduler
from areasync.config import SyncConfig
from areasync.state.policy import eviction_decision
from areasync.state.registry import RemoteRegistry

_logger = logging.getLogger(__name__)


class StaleSessionEvictor:
    """Sweeps the registry every ``eviction_period`` seconds.

    Safety net for clients whose disconnect hook never fired; the tiered
    thresholds come from :func:`~areasync.state.policy.eviction_decision`.
    ``remove`` is called with ``(session_id, reason)`` for every evicted
    session and is expected to clear the associated UI.
    """

    def __init__(
        self,
        config: SyncConfig,
        registry: RemoteRegistry,
        remove: Callable[..., bool],
        *,
        clock: Callable[[], float],
        scheduler: Scheduler,
    ) -> None:
        self._config = config
        self._registry = registry
        self._remove = remove
        self._clock = clock
        self._scheduler = scheduler
        self._handle: asyncio.TimerHandle | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict every stale record once; returns the evicted session ids."""
        if now is None:
            now = self._clock()
        config = self._config
        evicted: list[str] = []
        for record in self._registry.snapshot():
            decision = eviction_decision(
                now=now,
                last_update=record.last_update,
                last_seen=record.last_seen,
                session_start=record.session_start,
                recent_activity_threshold=config.recent_activity_threshold,
                base_stale_threshold=config.base_stale_threshold,
                long_session_threshold=config.long_session_threshold,
                max_stale_threshold=config.max_stale_threshold,
            )
            if not decision.evict:
                continue
            if self._remove(record.session_id, reason=decision.reason):
                evicted.append(record.session_id)
        if evicted:
            _logger.info("Evicted %d stale session(s): %s", len(evicted), ", ".join(evicted))
        return evicted

    def start(self) -> None:
        if self._handle is not None:
            return
        self._handle = self._scheduler.call_later(self._config.eviction_period, self._run)

    def stop(self) -> None:
        if self._handle is not None:
            self._scheduler.cancel(self._handle)
            self._handle = None

    def _run(self) -> None:
        self._handle = None
        try:
            self.sweep()
        except Exception:
            _logger.warning("Stale session sweep failed", exc_info=True)
        self._handle = self._scheduler.call_later(self._config.eviction_period, self._run)
