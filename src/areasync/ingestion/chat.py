"""Exactly-once, non-resurrecting chat delivery.

Store delivery is at-least-once and replayable: the same chat field can
arrive on every ``changed`` event until the sender clears it, and again
as part of the snapshot replayed on (re)subscribe.  Three properties are
kept together:

* idempotence: one logical message (sender + text) is displayed once;
* non-resurrection: anything written before this session started, or
  older than the recency window, is never displayed;
* bounded memory: every id set has a fixed capacity.
"""

from __future__ import annotations

import logging

from areasync._scheduler import Scheduler
from areasync.config import SyncConfig
from areasync.models.player import ChatMessageRecord, RemotePlayerRecord, stable_message_id
from areasync.state.history import BoundedHistory, ExpiringIdSet
from areasync.state.policy import is_chat_fresh

_logger = logging.getLogger(__name__)


class ChatDeduplicator:
    """Decides whether an inbound chat payload should be displayed."""

    def __init__(self, config: SyncConfig, scheduler: Scheduler) -> None:
        self._config = config
        self.global_history = BoundedHistory(config.global_history_capacity)
        self.self_echo = ExpiringIdSet(config.self_echo_ttl, scheduler)

    def note_outgoing(self, stable_id: str) -> None:
        """Remember a message this client just sent so its echo is ignored."""
        self.self_echo.add(stable_id)

    def accept(
        self,
        record: RemotePlayerRecord,
        text: str,
        payload_ts: float | None,
        *,
        now: float,
        session_start: float,
        sent_at: float | None = None,
    ) -> ChatMessageRecord | None:
        """Run the dedup pipeline; return the message to display, if any.

        *sent_at* is the send time from the message id, when known.  The
        record timestamp is refreshed by every later merge, so a chat field
        that was never cleared must also pass the recency gate on it.
        """
        stable_id = stable_message_id(record.session_id, text)

        if stable_id in self.global_history:
            return None
        # Recorded before any other check so a reentrant delivery within the
        # same event tick is already rejected.
        self.global_history.add(stable_id)

        if self.self_echo.pop(stable_id):
            _logger.debug("Ignoring echo of own chat message %s", stable_id)
            return None

        if stable_id in record.message_history:
            return None
        record.message_history.add(stable_id)

        window = self._config.chat_recent_window
        fresh = is_chat_fresh(payload_ts=payload_ts, session_start=session_start, now=now, window=window)
        if fresh and sent_at is not None:
            fresh = is_chat_fresh(payload_ts=sent_at, session_start=session_start, now=now, window=window)
        if not fresh:
            age = None if payload_ts is None else round(now - payload_ts, 3)
            _logger.debug(
                "Skipping old chat from %s: age=%ss from_current_session=%s",
                record.session_id,
                age,
                payload_ts is not None and payload_ts > session_start,
            )
            return None

        return ChatMessageRecord(
            stable_id=stable_id,
            sender_id=record.session_id,
            text=text,
            sent_at=payload_ts if payload_ts is not None else now,
        )

    def clear(self) -> None:
        self.global_history.clear()
        self.self_echo.clear()
