"""Session-level facade over the presence store."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from areasync._constants import DEFAULT_USERNAME
from areasync._scheduler import Scheduler
from areasync.archive import ChatArchive
from areasync.config import SyncConfig
from areasync.evictor import StaleSessionEvictor
from areasync.hooks import PresenceHooks
from areasync.ingestion.chat import ChatDeduplicator
from areasync.ingestion.reconciler import Reconciler
from areasync.interpolation import InterpolationDriver
from areasync.latency import LatencyMonitor
from areasync.models.player import LocalPlayerState, RemotePlayerRecord, color_from_session_id
from areasync.publisher import LocalStatePublisher
from areasync.state.events import Unsubscribe
from areasync.state.registry import RemoteRegistry
from areasync.store.base import PresenceStore

_logger = logging.getLogger(__name__)


class PresenceEngine:
    """Keeps one local session and every remote session in an area in sync.

    Usage::

        async with PresenceEngine(store, hooks=hooks) as engine:
            engine.initialize(session_id, "Ada")
            await engine.join_area("beach")
            ...
            engine.update_local(x, y, action, angle)   # every frame
            engine.tick(dt)                            # every frame

    All methods must be called from the thread running the asyncio loop.
    """

    def __init__(
        self,
        store: PresenceStore,
        *,
        config: SyncConfig | None = None,
        hooks: PresenceHooks | None = None,
        clock: Callable[[], float] = time.time,
        archive: ChatArchive | None = None,
    ) -> None:
        self._store = store
        self._config = config or SyncConfig()
        self._hooks = hooks or PresenceHooks()
        self._clock = clock
        self._scheduler = Scheduler()
        self._local = LocalPlayerState(area_id=self._config.default_area)
        self._registry = RemoteRegistry()
        self._latency = LatencyMonitor(self._config.ping_window, clock=clock)
        self._dedup = ChatDeduplicator(self._config, self._scheduler)
        self._reconciler = Reconciler(
            config=self._config,
            registry=self._registry,
            dedup=self._dedup,
            hooks=self._hooks,
            clock=clock,
        )
        self._interpolation = InterpolationDriver(self._config)
        self._evictor = StaleSessionEvictor(
            self._config,
            self._registry,
            self._reconciler.remove,
            clock=clock,
            scheduler=self._scheduler,
        )
        self._publisher = LocalStatePublisher(
            config=self._config,
            store=store,
            state=self._local,
            latency=self._latency,
            dedup=self._dedup,
            scheduler=self._scheduler,
            clock=clock,
            archive=archive,
        )
        self._current_area: str | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._session_start = clock()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PresenceEngine:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self.is_connected():
            await self.disconnect()
        else:
            self._scheduler.cancel_all()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def initialize(self, session_id: str, username: str | None = None) -> None:
        """Bind the engine to the local session identity."""
        if not session_id:
            _logger.warning("initialize() called without a session id; ignoring")
            return
        self._local.session_id = session_id
        self._local.username = username or DEFAULT_USERNAME
        self._local.color = color_from_session_id(session_id)
        self._reconciler.local_session_id = session_id
        _logger.debug("Initialized session %s as %s", session_id, self._local.username)

    def update_username(self, username: str) -> None:
        """Change the display name; propagated with the next write."""
        if not username:
            return
        self._local.username = username
        self._publisher.request_publish()

    async def join_area(self, area_id: str | None = None) -> None:
        """Subscribe to *area_id* and announce the local session there.

        Joining the current area again is a no-op.  Switching areas leaves
        the previous one first.
        """
        area = area_id or self._config.default_area
        if self._unsubscribe is not None and self._current_area == area:
            return
        if self._unsubscribe is not None:
            await self._leave_current_area()

        self._session_start = self._clock()
        self._reconciler.session_start = self._session_start
        self._publisher.session_start = self._session_start
        self._current_area = area
        self._local.area_id = area

        if self._local.session_id:
            await self._publisher.join(area)
        else:
            _logger.warning("Joining %s as observer: initialize() was not called", area)

        self._unsubscribe = self._store.subscribe(area, self._reconciler.on_store_event)
        if self._config.eviction_enabled:
            self._evictor.start()
        _logger.info("Joined area %s as %s", area, self._local.session_id or "observer")

    async def _leave_current_area(self) -> None:
        previous = self._current_area
        self._evictor.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._registry.clear()
        self._dedup.self_echo.clear()
        self._publisher.deactivate()
        self._scheduler.cancel_all()
        session_id = self._local.session_id
        if previous and session_id:
            try:
                await self._store.remove(previous, session_id)
            except Exception:
                _logger.warning("Failed to remove %s from %s", session_id, previous, exc_info=True)

    async def disconnect(self) -> None:
        """Leave the area and reset the session.

        Order matters: stop eviction, unsubscribe, drop all timers and
        in-flight writes, best-effort remove the own record, then reset.
        """
        area = self._current_area
        session_id = self._local.session_id

        self._evictor.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self._dedup.clear()
        self._publisher.deactivate()
        self._scheduler.cancel_all()
        self._registry.clear()

        if area and session_id:
            try:
                await self._store.remove(area, session_id)
            except Exception:
                _logger.warning("Failed to remove own presence on disconnect", exc_info=True)

        self._local.session_id = None
        self._local.username = DEFAULT_USERNAME
        self._local.area_id = self._config.default_area
        self._local.x = self._local.y = self._local.angle = 0.0
        self._local.action = None
        self._local.mining_node_id = None
        self._local.move_state = 0
        self._reconciler.local_session_id = None
        self._current_area = None
        self._latency.reset()
        self._session_start = self._clock()
        self._reconciler.session_start = self._session_start
        self._publisher.session_start = self._session_start
        _logger.info("Disconnected session %s from %s", session_id, area)

    # ------------------------------------------------------------------
    # Per-frame
    # ------------------------------------------------------------------

    def update_local(
        self,
        x: float,
        y: float,
        action: str | None = None,
        angle: float = 0.0,
        mining_node_id: str | None = None,
    ) -> bool:
        """Record the local sample; returns True when it triggered a write."""
        return self._publisher.update_local(x, y, action, angle, mining_node_id)

    def tick(self, dt: float) -> None:
        """Advance interpolation and cosmetic rotation by *dt* seconds."""
        self._interpolation.advance(self._registry.snapshot(), dt, self._clock())

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def send_chat(self, text: Any) -> bool:
        return await self._publisher.send_chat(text)

    def set_typing(self, typing: bool) -> None:
        self._publisher.set_typing(typing)

    def queue_projectile_event(self, payload: dict[str, Any]) -> None:
        self._publisher.queue_projectile_event(payload)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_remote_players(self) -> tuple[RemotePlayerRecord, ...]:
        return self._registry.snapshot()

    def get_local_player(self) -> LocalPlayerState:
        return self._local.copy()

    def is_connected(self) -> bool:
        return bool(self._local.session_id and self._current_area)

    def get_ping(self) -> int:
        return self._latency.ping_ms

    @property
    def current_area(self) -> str | None:
        return self._current_area

    @property
    def session_start(self) -> float:
        return self._session_start

    def get_stats(self) -> dict[str, Any]:
        return {
            "connected": self.is_connected(),
            "area": self._current_area,
            "session_id": self._local.session_id,
            "remote_players": len(self._registry),
            "ping_ms": self._latency.ping_ms,
            "writes_emitted": self._publisher.writes_emitted,
            "write_failures": self._publisher.write_failures,
            "pending_timers": self._scheduler.pending_timers,
            "pending_tasks": self._scheduler.pending_tasks,
            "chat_history_size": len(self._dedup.global_history),
        }

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_stale(self) -> list[str]:
        """Run one eviction sweep immediately."""
        return self._evictor.sweep()
