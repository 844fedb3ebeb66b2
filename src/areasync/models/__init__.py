"""Presence data models."""

from areasync.models.player import (
    ChatMessageRecord,
    LocalPlayerState,
    RemotePlayerRecord,
    color_from_session_id,
    stable_message_id,
)
from areasync.models.presence import OutboundWritePacket, PresenceUpdate, ProjectileEvent

__all__ = [
    "ChatMessageRecord",
    "LocalPlayerState",
    "OutboundWritePacket",
    "PresenceUpdate",
    "ProjectileEvent",
    "RemotePlayerRecord",
    "color_from_session_id",
    "stable_message_id",
]
