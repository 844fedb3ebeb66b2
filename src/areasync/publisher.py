"""Outbound half of the engine: turns local state into store writes."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from typing import Any

from areasync._constants import PROJECTILE_EVENT_TYPE
from areasync._scheduler import Scheduler
from areasync.archive import ChatArchive
from areasync.config import SyncConfig
from areasync.exceptions import InvalidChatMessageError, NotConnectedError
from areasync.ingestion.chat import ChatDeduplicator
from areasync.ingestion.normalize import to_epoch_ms
from areasync.latency import LatencyMonitor
from areasync.models.player import LocalPlayerState, stable_message_id
from areasync.models.presence import OutboundWritePacket
from areasync.state.policy import has_changed, quantize_move_state
from areasync.store.base import PresenceStore

_logger = logging.getLogger(__name__)

_Sample = tuple[float, float, float, str | None, str | None]


def _sample(state: LocalPlayerState) -> _Sample:
    return (state.x, state.y, state.angle, state.action, state.mining_node_id)


class LocalStatePublisher:
    """Throttled publisher for the local session.

    State-triggered writes are emitted at most once per
    ``min_publish_interval`` and only when the sampled state moved beyond
    the configured epsilons relative to the last *emitted* write.  Chat and
    projectile writes bypass the throttle but still count as the latest
    write for throttle and heartbeat purposes.  Typing and username changes
    ride on the next eligible write, deferred to the end of the current
    interval when nothing else is due.  Every write is fire-and-forget:
    failures are logged and never reach the caller.
    """

    def __init__(
        self,
        *,
        config: SyncConfig,
        store: PresenceStore,
        state: LocalPlayerState,
        latency: LatencyMonitor,
        dedup: ChatDeduplicator,
        scheduler: Scheduler,
        clock: Callable[[], float],
        archive: ChatArchive | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self.state = state
        self._latency = latency
        self._dedup = dedup
        self._scheduler = scheduler
        self._clock = clock
        self._archive = archive
        self.session_start: float = clock()
        self._active = False
        self._heartbeat_handle: asyncio.TimerHandle | None = None
        self._deferred_handle: asyncio.TimerHandle | None = None
        self._reset_bookkeeping()

    def _reset_bookkeeping(self) -> None:
        self._last_publish_at: float | None = None
        self._last_published: _Sample | None = None
        self._last_sample: _Sample | None = None
        self._last_sample_at: float | None = None
        self._pending_chat: tuple[str, str] | None = None
        self._pending_projectile: dict[str, Any] | None = None
        self._pending_typing: bool | None = None
        self._typing = False
        self._last_chat_text: str | None = None
        self._last_chat_at: float | None = None
        self.writes_emitted = 0
        self.write_failures = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def last_publish_at(self) -> float | None:
        return self._last_publish_at

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def join(self, area_id: str) -> None:
        """Register the disconnect hook and write the full initial record.

        Both steps are best-effort: a failure is logged and the session
        keeps running, relying on later merges and the peers' evictors.
        """
        state = self.state
        assert state.session_id is not None  # noqa: S101
        self._active = True
        now = self._clock()

        try:
            await self._store.register_remove_on_disconnect(area_id, state.session_id)
        except Exception:
            _logger.warning("Could not register disconnect cleanup for %s", state.session_id, exc_info=True)

        packet = self._build_packet(now, session_start=self.session_start)
        record = packet.to_record()
        record.pop("projectileEvent", None)
        try:
            await self._store.write(area_id, state.session_id, record)
        except Exception:
            self.write_failures += 1
            _logger.warning("Initial presence write failed for %s", state.session_id, exc_info=True)
        else:
            self._latency.record(self._clock() - now)
        self._mark_published(now)
        self.start_heartbeat()

    def deactivate(self) -> None:
        self._active = False
        self.stop_heartbeat()
        self._cancel_deferred()
        self._reset_bookkeeping()

    def start_heartbeat(self) -> None:
        if self._heartbeat_handle is None:
            self._heartbeat_handle = self._scheduler.call_later(self._config.heartbeat_interval, self._heartbeat_tick)

    def stop_heartbeat(self) -> None:
        if self._heartbeat_handle is not None:
            self._scheduler.cancel(self._heartbeat_handle)
            self._heartbeat_handle = None

    def _heartbeat_tick(self) -> None:
        self._heartbeat_handle = None
        if not self._active:
            return
        now = self._clock()
        if self._last_publish_at is None or now - self._last_publish_at >= self._config.heartbeat_interval:
            self.send_heartbeat(now)
        self.start_heartbeat()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def update_local(
        self,
        x: float,
        y: float,
        action: str | None = None,
        angle: float = 0.0,
        mining_node_id: str | None = None,
    ) -> bool:
        """Record a local sample; returns True when a write was emitted."""
        state = self.state
        now = self._clock()

        current: _Sample = (x, y, angle, action, mining_node_id)
        if self._last_sample is not None and self._last_sample_at is not None:
            distance = math.hypot(x - self._last_sample[0], y - self._last_sample[1])
            state.move_state = quantize_move_state(distance, now - self._last_sample_at, self._config.max_speed)
        self._last_sample = current
        self._last_sample_at = now
        state.x, state.y, state.angle, state.action, state.mining_node_id = current

        if not self._active or not state.session_id:
            return False

        elapsed = math.inf if self._last_publish_at is None else now - self._last_publish_at
        changed = self._last_published is None or has_changed(
            previous=self._last_published,
            current=current,
            position_epsilon=self._config.position_epsilon,
            heading_epsilon=self._config.heading_epsilon,
        )
        if changed:
            if elapsed >= self._config.min_publish_interval:
                self.publish(now)
                return True
            return False
        if elapsed > self._config.heartbeat_interval:
            self.send_heartbeat(now)
            return True
        return False

    def publish(self, now: float | None = None) -> asyncio.Task[bool] | None:
        """Emit a full state write (including pending one-shot fields)."""
        if not self._active or not self.state.session_id:
            return None
        if now is None:
            now = self._clock()
        packet = self._build_packet(now)
        return self._scheduler.spawn(self._write(packet), name="areasync-publish")

    def send_heartbeat(self, now: float | None = None) -> asyncio.Task[bool] | None:
        """Emit a liveness-only write."""
        if not self._active or not self.state.session_id:
            return None
        if now is None:
            now = self._clock()
        packet = OutboundWritePacket(sent_at=now, heartbeat_only=True)
        self._last_publish_at = now
        return self._scheduler.spawn(self._write(packet), name="areasync-heartbeat")

    def request_publish(self) -> None:
        """Publish now if the throttle allows it, otherwise once the interval ends.

        Repeated requests inside one interval collapse into a single write.
        """
        if not self._active or not self.state.session_id:
            return
        now = self._clock()
        elapsed = math.inf if self._last_publish_at is None else now - self._last_publish_at
        if elapsed >= self._config.min_publish_interval:
            self.publish(now)
        elif self._deferred_handle is None:
            self._deferred_handle = self._scheduler.call_later(
                self._config.min_publish_interval - elapsed, self._flush_deferred
            )

    def _flush_deferred(self) -> None:
        self._deferred_handle = None
        self.publish()

    def _cancel_deferred(self) -> None:
        if self._deferred_handle is not None:
            self._scheduler.cancel(self._deferred_handle)
            self._deferred_handle = None

    async def send_chat(self, text: Any) -> bool:
        """Publish a chat message; returns False for a suppressed rapid duplicate.

        Raises
        ------
        NotConnectedError
            No session has joined an area.
        InvalidChatMessageError
            *text* is not a string or is empty after trimming.
        """
        state = self.state
        if not self._active or not state.session_id:
            raise NotConnectedError("Not connected to an area")
        if not isinstance(text, str):
            raise InvalidChatMessageError("Invalid message")
        trimmed = text.strip()
        if not trimmed:
            raise InvalidChatMessageError("Empty message")
        message = trimmed[: self._config.chat_max_length]

        now = self._clock()
        if (
            self._last_chat_text == message
            and self._last_chat_at is not None
            and now - self._last_chat_at < self._config.chat_rapid_duplicate_window
        ):
            _logger.debug("Dropping rapid duplicate chat message")
            return False

        stable_id = stable_message_id(state.session_id, message)
        message_id = f"{stable_id}_{to_epoch_ms(now)}"
        self._dedup.note_outgoing(stable_id)
        self._pending_chat = (message, message_id)
        self._pending_typing = False
        self._typing = False

        area_id = state.area_id
        session_id = state.session_id
        ok = await self._write(self._build_packet(now))
        if not ok:
            self._dedup.self_echo.pop(stable_id)
        else:
            self._last_chat_text = message
            self._last_chat_at = now
            self._scheduler.call_later(
                self._config.chat_clear_delay,
                self._schedule_clear,
                area_id,
                session_id,
                message_id,
            )
        if self._archive is not None:
            self._scheduler.spawn(self._forward_to_archive(session_id, message, state.username), name="areasync-archive")
        return ok

    def set_typing(self, typing: bool) -> None:
        """Announce a typing-state change; repeats of the current state are ignored."""
        typing = bool(typing)
        if typing == self._typing:
            return
        self._typing = typing
        self._pending_typing = typing
        self.request_publish()

    def queue_projectile_event(self, payload: dict[str, Any]) -> None:
        """Attach a one-shot projectile event to an immediate write."""
        now = self._clock()
        self._pending_projectile = {
            "type": PROJECTILE_EVENT_TYPE,
            "timestamp": to_epoch_ms(now),
            "data": dict(payload),
        }
        self.publish(now)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_packet(self, now: float, *, session_start: float | None = None) -> OutboundWritePacket:
        state = self.state
        chat, message_id = self._pending_chat or (None, None)
        packet = OutboundWritePacket(
            sent_at=now,
            username=state.username,
            area_id=state.area_id,
            x=state.x,
            y=state.y,
            action=state.action,
            angle=state.angle,
            color=state.color,
            mining_node_id=state.mining_node_id,
            move_state=state.move_state,
            session_start=session_start,
            chat=chat,
            message_id=message_id,
            typing=self._pending_typing,
            projectile_event=self._pending_projectile,
        )
        self._pending_chat = None
        self._pending_projectile = None
        self._pending_typing = None
        self._cancel_deferred()
        self._mark_published(now)
        return packet

    def _mark_published(self, now: float) -> None:
        self._last_publish_at = now
        self._last_published = _sample(self.state)

    async def _write(self, packet: OutboundWritePacket) -> bool:
        state = self.state
        session_id = state.session_id
        if session_id is None:
            return False
        self.writes_emitted += 1
        try:
            await self._store.merge(state.area_id, session_id, packet.to_record())
        except Exception:
            self.write_failures += 1
            _logger.warning("Presence write failed for %s", session_id, exc_info=True)
            return False
        self._latency.record(self._clock() - packet.sent_at)
        return True

    def _schedule_clear(self, area_id: str, session_id: str, message_id: str) -> None:
        self._scheduler.spawn(self._clear_chat(area_id, session_id, message_id), name="areasync-chat-clear")

    async def _clear_chat(self, area_id: str, session_id: str, message_id: str) -> None:
        try:
            cleared = await self._store.transactional_clear(area_id, session_id, message_id)
        except Exception:
            _logger.warning("Chat clear failed for %s", session_id, exc_info=True)
            return
        if not cleared:
            _logger.debug("Chat %s already replaced; clear skipped", message_id)

    async def _forward_to_archive(self, session_id: str, text: str, username: str) -> None:
        assert self._archive is not None  # noqa: S101
        try:
            await self._archive.post_message(session_id, text, username)
        except Exception:
            _logger.warning("Chat archive forwarding failed", exc_info=True)
