"""Local and remote player state."""

from __future__ import annotations

import dataclasses
import hashlib

from areasync._constants import DEFAULT_COLOR, DEFAULT_USERNAME
from areasync.state.history import BoundedHistory

_PLAYER_COLORS: tuple[str, ...] = (
    "#ff6b6b",
    "#f06595",
    "#cc5de8",
    "#845ef7",
    "#5c7cfa",
    "#339af0",
    "#22b8cf",
    "#20c997",
    "#51cf66",
    "#94d82d",
    "#fcc419",
    "#ff922b",
)


def color_from_session_id(session_id: str | None) -> str:
    """Deterministic palette color for a session id."""
    if not session_id:
        return DEFAULT_COLOR
    digest = hashlib.md5(session_id.encode("utf-8"), usedforsecurity=False).digest()
    return _PLAYER_COLORS[int.from_bytes(digest[:4], "big") % len(_PLAYER_COLORS)]


def stable_message_id(session_id: str, text: str) -> str:
    """Time-independent chat id: redelivery of one message maps to one id."""
    return f"{session_id}_{text}"


@dataclasses.dataclass(frozen=True, slots=True)
class ChatMessageRecord:
    """A chat message accepted for display."""

    stable_id: str
    sender_id: str
    text: str
    sent_at: float


@dataclasses.dataclass(slots=True)
class LocalPlayerState:
    """State of the local session, mutated every tick by the owning client."""

    session_id: str | None = None
    username: str = DEFAULT_USERNAME
    area_id: str = "beach"
    x: float = 0.0
    y: float = 0.0
    angle: float = 0.0
    action: str | None = None
    mining_node_id: str | None = None
    color: str = DEFAULT_COLOR
    move_state: int = 0

    def copy(self) -> LocalPlayerState:
        return dataclasses.replace(self)


@dataclasses.dataclass(slots=True, eq=False)
class RemotePlayerRecord:
    """Everything known locally about one remote session.

    ``target_x``/``target_y`` and the ``interp_start_*`` fields are either
    all set (interpolating) or all ``None`` (idle).  Times are epoch seconds.
    """

    session_id: str
    username: str
    x: float
    y: float
    session_start: float
    last_seen: float
    last_update: float
    message_history: BoundedHistory
    angle: float = 0.0
    action: str | None = None
    mining_node_id: str | None = None
    color: str = DEFAULT_COLOR
    body_spin_rate: float = 0.0
    body_rotation: float = 0.0
    typing: bool = False
    last_projectile_at: float | None = None
    target_x: float | None = None
    target_y: float | None = None
    interp_start_time: float | None = None
    interp_start_x: float | None = None
    interp_start_y: float | None = None

    @property
    def interpolating(self) -> bool:
        return self.target_x is not None and self.target_y is not None

    def set_target(self, x: float, y: float, now: float) -> None:
        """Begin easing from the current rendered position toward ``(x, y)``."""
        self.interp_start_time = now
        self.interp_start_x = self.x
        self.interp_start_y = self.y
        self.target_x = x
        self.target_y = y

    def snap_to_target(self) -> None:
        if self.target_x is not None and self.target_y is not None:
            self.x = self.target_x
            self.y = self.target_y
        self.clear_interpolation()

    def clear_interpolation(self) -> None:
        self.target_x = None
        self.target_y = None
        self.interp_start_time = None
        self.interp_start_x = None
        self.interp_start_y = None
