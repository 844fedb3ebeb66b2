"""Store event ingestion.

This module translates add/change/remove events from the presence store
into registry updates.  Each callback leaves the registry consistent
before returning: all field values are derived first, then committed,
and UI hooks fire only after the commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from areasync._constants import REMOTE_FALLBACK_USERNAME
from areasync._redact import redact_for_log
from areasync.config import SyncConfig
from areasync.hooks import ChatDisplay, PresenceHooks, ProjectileFired
from areasync.ingestion.chat import ChatDeduplicator
from areasync.models.player import RemotePlayerRecord, color_from_session_id
from areasync.models.presence import PresenceUpdate, ProjectileEvent
from areasync.state.events import StoreEventKind
from areasync.state.history import BoundedHistory
from areasync.state.policy import should_reject_position, spin_rate_for_move_state
from areasync.state.registry import RemoteRegistry

_logger = logging.getLogger(__name__)


class Reconciler:
    """Owns every mutation of :class:`RemotePlayerRecord` driven by the store.

    ``local_session_id`` (own records are ignored) and ``session_start``
    (the boundary for replay and chat recency checks) are set by the
    engine when a session begins.
    """

    def __init__(
        self,
        *,
        config: SyncConfig,
        registry: RemoteRegistry,
        dedup: ChatDeduplicator,
        hooks: PresenceHooks,
        clock: Callable[[], float],
    ) -> None:
        self._config = config
        self._registry = registry
        self._dedup = dedup
        self._hooks = hooks
        self._clock = clock
        self.local_session_id: str | None = None
        self.session_start: float = clock()

    def on_store_event(self, kind: Any, session_id: str, record: dict[str, Any] | None) -> None:
        """Store subscription callback."""
        try:
            event_kind = StoreEventKind(kind)
        except ValueError:
            _logger.debug("Ignoring unknown store event kind %r for %s", kind, session_id)
            return
        if not session_id or session_id == self.local_session_id:
            return

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Store event %s %s: %s", event_kind, session_id, redact_for_log(record))

        if event_kind is StoreEventKind.REMOVED:
            self.remove(session_id, reason="removed by store")
            return

        update = PresenceUpdate.from_record(record)
        self.apply(session_id, update)

    def apply(self, session_id: str, update: PresenceUpdate) -> RemotePlayerRecord | None:
        """Merge one parsed update into the registry; returns the affected record."""
        now = self._clock()
        existing = self._registry.get(session_id)

        if update.has_position:
            if should_reject_position(
                known=existing is not None,
                payload_ts=update.update_timestamp,
                session_start=self.session_start,
                now=now,
                stale_threshold=self._config.stale_data_threshold,
            ):
                _logger.debug("Ignoring stale snapshot for unknown session %s", session_id)
                return None
        elif existing is None:
            # Events and other partials need a known position to be rendered;
            # the next position update carries everything needed.
            _logger.debug("Ignoring position-less update for unknown session %s", session_id)
            return None

        if existing is None:
            record = self._create(session_id, update, now)
        else:
            record = existing
            self._merge(record, update, now)

        self._handle_ephemera(record, update, now, first_sighting=existing is None)
        return record

    def remove(self, session_id: str, *, reason: str) -> bool:
        """Delete a record and clear its ephemeral UI."""
        record = self._registry.remove(session_id)
        if record is None:
            return False
        record.message_history.clear()
        _logger.info("Player removed: %s (%s) - %s", record.username, session_id, reason)
        self._hooks.player_removed(session_id)
        return True

    # ------------------------------------------------------------------
    # Record construction / merge
    # ------------------------------------------------------------------

    def _create(self, session_id: str, update: PresenceUpdate, now: float) -> RemotePlayerRecord:
        assert update.ax is not None and update.ay is not None  # noqa: S101
        payload_ts = update.update_timestamp
        record = RemotePlayerRecord(
            session_id=session_id,
            username=update.username or REMOTE_FALLBACK_USERNAME,
            x=update.ax,
            y=update.ay,
            angle=update.angle or 0.0,
            action=update.action,
            mining_node_id=update.mining_node_id,
            color=update.color or color_from_session_id(session_id),
            body_spin_rate=spin_rate_for_move_state(update.move_state),
            typing=bool(update.typing),
            session_start=update.session_start or payload_ts or now,
            last_seen=now,
            last_update=payload_ts or now,
            message_history=BoundedHistory(self._config.record_history_capacity),
        )
        self._registry.put(record)
        _logger.debug(
            "Added player %s: username=%s x=%s y=%s total=%d",
            session_id,
            record.username,
            record.x,
            record.y,
            len(self._registry),
        )
        return record

    def _merge(self, record: RemotePlayerRecord, update: PresenceUpdate, now: float) -> None:
        username = update.username or record.username
        angle = update.angle if update.angle is not None else record.angle
        action = update.action if update.provided("action") else record.action
        if update.has_position or update.provided("mining_node_id"):
            mining_node_id = update.mining_node_id
        else:
            mining_node_id = record.mining_node_id
        color = update.color or record.color
        spin_rate = spin_rate_for_move_state(update.move_state) if update.move_state is not None else record.body_spin_rate
        payload_ts = update.update_timestamp

        if update.has_position:
            assert update.ax is not None and update.ay is not None  # noqa: S101
            record.set_target(update.ax, update.ay, now)
        record.username = username
        record.angle = angle
        record.action = action
        record.mining_node_id = mining_node_id
        record.color = color
        record.body_spin_rate = spin_rate
        record.last_seen = now
        record.last_update = payload_ts or now
        if update.session_start is not None and not record.session_start:
            record.session_start = update.session_start

    # ------------------------------------------------------------------
    # Ephemeral fields
    # ------------------------------------------------------------------

    def _handle_ephemera(
        self,
        record: RemotePlayerRecord,
        update: PresenceUpdate,
        now: float,
        *,
        first_sighting: bool,
    ) -> None:
        if update.chat:
            accepted = self._dedup.accept(
                record,
                update.chat,
                update.update_timestamp,
                now=now,
                session_start=self.session_start,
                sent_at=update.chat_sent_at,
            )
            if accepted is not None:
                _logger.debug("Showing chat from %s at (%s, %s)", record.session_id, record.x, record.y)
                self._hooks.chat_displayed(
                    ChatDisplay(
                        session_id=record.session_id,
                        username=record.username,
                        text=accepted.text,
                        x=record.x,
                        y=record.y,
                        duration=self._config.chat_bubble_duration,
                    )
                )

        if update.typing is not None and update.typing != record.typing:
            record.typing = update.typing
            self._hooks.typing_changed(record.session_id, update.typing, record.x, record.y)

        event = update.projectile_event
        if event is not None and event.is_projectile:
            self._fire_projectile(record, event, first_sighting=first_sighting)

    def _fire_projectile(self, record: RemotePlayerRecord, event: ProjectileEvent, *, first_sighting: bool) -> None:
        if event.timestamp is not None:
            if event.timestamp == record.last_projectile_at:
                # Same one-shot event redelivered with an unrelated change.
                return
            if first_sighting and event.timestamp < self.session_start:
                return
            record.last_projectile_at = event.timestamp
        _logger.debug("Projectile from %s at (%s, %s)", record.session_id, record.x, record.y)
        self._hooks.projectile_fired(
            ProjectileFired(
                session_id=record.session_id,
                start_x=record.x,
                start_y=record.y,
                target_x=event.target_x,
                target_y=event.target_y,
                data=dict(event.data),
            )
        )
