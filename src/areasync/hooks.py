"""Callbacks exposed to rendering/UI collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChatDisplay:
    """A chat bubble to show above a remote session."""

    session_id: str
    username: str
    text: str
    x: float
    y: float
    duration: float


@dataclass(frozen=True, slots=True)
class ProjectileFired:
    """A remote projectile to spawn locally."""

    session_id: str
    start_x: float
    start_y: float
    target_x: float | None
    target_y: float | None
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class PresenceHooks:
    """Optional UI callbacks.

    Every call is isolated: an exception raised by a callback is logged
    and swallowed so one misbehaving collaborator never breaks
    reconciliation for the remaining sessions.
    """

    on_chat_displayed: Callable[[ChatDisplay], None] | None = None
    on_typing_changed: Callable[[str, bool, float, float], None] | None = None
    on_projectile_fired: Callable[[ProjectileFired], None] | None = None
    on_player_removed: Callable[[str], None] | None = None

    def chat_displayed(self, display: ChatDisplay) -> None:
        _invoke("on_chat_displayed", self.on_chat_displayed, display)

    def typing_changed(self, session_id: str, typing: bool, x: float, y: float) -> None:
        _invoke("on_typing_changed", self.on_typing_changed, session_id, typing, x, y)

    def projectile_fired(self, event: ProjectileFired) -> None:
        _invoke("on_projectile_fired", self.on_projectile_fired, event)

    def player_removed(self, session_id: str) -> None:
        _invoke("on_player_removed", self.on_player_removed, session_id)


def _invoke(name: str, callback: Callable[..., None] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        _logger.debug("%s callback failed", name, exc_info=True)
