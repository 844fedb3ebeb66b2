"""Presence update models (inbound records and outbound write packets)."""

from __future__ import annotations

import dataclasses
from typing import Any, ClassVar

from pydantic import Field, ValidationError

from areasync._constants import MAX_MOVE_STATE, PROJECTILE_EVENT_TYPE
from areasync.ingestion.normalize import (
    normalize_timestamp_seconds,
    safe_bool,
    safe_float,
    safe_int,
    safe_str,
    to_epoch_ms,
    without_none,
)
from areasync.models._base import PresenceBaseModel

_CONTROL_FIELDS = frozenset({"raw", "last_update", "ts"})


def _coerce_move_state(value: Any) -> int | None:
    parsed = safe_int(value)
    if parsed is None or not 0 <= parsed <= MAX_MOVE_STATE:
        return None
    return parsed


def _coerce_dict(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


class ProjectileEvent(PresenceBaseModel):
    """One-shot projectile event attached to a presence write.

    Parameters
    ----------
    type : str or None
        Event discriminator; only ``"projectile"`` is acted upon.
    timestamp : float or None
        Epoch seconds when the event was queued (ms on the wire).
    data : dict
        Free-form payload; ``targetX``/``targetY`` give the aim point.
    """

    _COERCERS: ClassVar[dict[str, Any]] = {
        "type": safe_str,
        "timestamp": normalize_timestamp_seconds,
        "data": _coerce_dict,
    }

    type: str | None = None
    timestamp: float | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_projectile(self) -> bool:
        return self.type == PROJECTILE_EVENT_TYPE

    @property
    def target_x(self) -> float | None:
        return safe_float(self.data.get("targetX", self.data.get("target_x")))

    @property
    def target_y(self) -> float | None:
        return safe_float(self.data.get("targetY", self.data.get("target_y")))


def _coerce_projectile(value: Any) -> ProjectileEvent | None:
    if isinstance(value, ProjectileEvent):
        return value
    if not isinstance(value, dict):
        return None
    try:
        return ProjectileEvent.model_validate(value)
    except ValidationError:
        return None


class PresenceUpdate(PresenceBaseModel):
    """A presence record as delivered by the store.

    Every field is optional and interpreted independently: position,
    heading, chat and one-shot events may arrive together or apart.
    Malformed fields are dropped individually (see
    :class:`~areasync.models._base.PresenceBaseModel`), so
    :meth:`from_record` never raises.

    Timestamps (``session_start``, ``last_update``, ``ts``) are epoch
    seconds; the wire carries milliseconds.
    """

    _COERCERS: ClassVar[dict[str, Any]] = {
        "username": safe_str,
        "areaId": safe_str,
        "ax": safe_float,
        "ay": safe_float,
        "action": safe_str,
        "angle": safe_float,
        "color": safe_str,
        "miningNodeId": safe_str,
        "moveState": _coerce_move_state,
        "chat": safe_str,
        "messageId": safe_str,
        "typing": safe_bool,
        "projectileEvent": _coerce_projectile,
        "sessionStart": normalize_timestamp_seconds,
        "lastUpdate": normalize_timestamp_seconds,
        "ts": normalize_timestamp_seconds,
    }

    username: str | None = None
    area_id: str | None = None
    ax: float | None = None
    ay: float | None = None
    action: str | None = None
    angle: float | None = None
    color: str | None = None
    mining_node_id: str | None = None
    move_state: int | None = None
    chat: str | None = None
    message_id: str | None = None
    typing: bool | None = None
    projectile_event: ProjectileEvent | None = None
    session_start: float | None = None
    last_update: float | None = None
    ts: float | None = None

    @classmethod
    def from_record(cls, record: Any) -> PresenceUpdate:
        """Parse a store record; non-dict input yields an empty update."""
        if not isinstance(record, dict):
            return cls(raw={})
        try:
            return cls.model_validate(record)
        except ValidationError:
            # Coercion already dropped malformed fields; reaching this means a
            # value slipped past its coercer.  Keep the record usable.
            return cls(raw=dict(record))

    @property
    def has_position(self) -> bool:
        return self.ax is not None and self.ay is not None

    @property
    def update_timestamp(self) -> float | None:
        """Best-effort time the writer produced this record."""
        return self.last_update if self.last_update is not None else self.ts

    @property
    def chat_sent_at(self) -> float | None:
        """Send time carried in the ``messageId`` suffix (``<id>_<ms>``)."""
        if not self.message_id:
            return None
        _, sep, suffix = self.message_id.rpartition("_")
        if not sep:
            return None
        return normalize_timestamp_seconds(suffix)

    @property
    def heartbeat_only(self) -> bool:
        """True when the record carries nothing but liveness timestamps."""
        return not (self.model_fields_set - _CONTROL_FIELDS)


@dataclasses.dataclass(slots=True)
class OutboundWritePacket:
    """One publish worth of local state, built fresh for every write.

    ``sent_at`` (epoch seconds) is kept for round-trip measurement and
    written as ``lastUpdate``.
    """

    sent_at: float
    heartbeat_only: bool = False
    username: str | None = None
    area_id: str | None = None
    x: float = 0.0
    y: float = 0.0
    action: str | None = None
    angle: float = 0.0
    color: str | None = None
    mining_node_id: str | None = None
    move_state: int = 0
    session_start: float | None = None
    chat: str | None = None
    message_id: str | None = None
    typing: bool | None = None
    projectile_event: dict[str, Any] | None = None

    def to_record(self) -> dict[str, Any]:
        """Serialize to the camelCase wire record used by ``merge``."""
        if self.heartbeat_only:
            return {"lastUpdate": to_epoch_ms(self.sent_at)}

        record: dict[str, Any] = {
            "username": self.username,
            "areaId": self.area_id,
            "ax": round(self.x),
            "ay": round(self.y),
            "action": self.action,
            "angle": self.angle,
            "color": self.color,
            "miningNodeId": self.mining_node_id,
            "moveState": self.move_state,
            "lastUpdate": to_epoch_ms(self.sent_at),
            # Always written so a consumed one-shot event is cleared on the next publish.
            "projectileEvent": without_none(self.projectile_event) if self.projectile_event else None,
        }
        if self.session_start is not None:
            record["sessionStart"] = to_epoch_ms(self.session_start)
        if self.chat is not None:
            record["chat"] = self.chat
            record["messageId"] = self.message_id
        if self.typing is not None:
            record["typing"] = self.typing
        return record
