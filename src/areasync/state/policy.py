"""Deterministic sync policy.

This module intentionally contains *no* payload parsing and no I/O.
Every decision the engine makes about publishing, accepting, easing and
evicting is a pure function of its inputs here, so it can be tested
without a loop or a store.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum

from areasync._constants import MAX_MOVE_STATE, MOVE_STATE_SPIN_RATES


def has_changed(
    *,
    previous: tuple[float, float, float, str | None, str | None],
    current: tuple[float, float, float, str | None, str | None],
    position_epsilon: float,
    heading_epsilon: float,
) -> bool:
    """Whether (x, y, angle, action, mining_node_id) moved beyond the epsilons."""
    px, py, pangle, paction, pmining = previous
    cx, cy, cangle, caction, cmining = current
    if abs(cx - px) > position_epsilon or abs(cy - py) > position_epsilon:
        return True
    if abs(cangle - pangle) > heading_epsilon:
        return True
    return caction != paction or cmining != pmining


def quantize_move_state(distance: float, elapsed: float, max_speed: float) -> int:
    """Map instantaneous speed onto 0 (idle) .. 3 (fast)."""
    seconds = max(0.001, elapsed)
    speed = distance / seconds
    norm = min(1.0, speed / max(1.0, max_speed))
    return min(MAX_MOVE_STATE, int(math.floor(norm * MAX_MOVE_STATE)))


def spin_rate_for_move_state(move_state: int | None) -> float:
    """Cosmetic body spin rate (rad/s); unknown states do not spin."""
    if move_state is None or not 0 <= move_state < len(MOVE_STATE_SPIN_RATES):
        return 0.0
    return MOVE_STATE_SPIN_RATES[move_state]


def should_reject_position(
    *,
    known: bool,
    payload_ts: float | None,
    session_start: float,
    now: float,
    stale_threshold: float,
) -> bool:
    """Replay guard for position updates.

    A first sighting is dropped only when it both predates our own session
    and is older than the staleness threshold; updates for records we
    already track are always accepted.
    """
    if known:
        return False
    ts = payload_ts or 0.0
    return (now - ts) > stale_threshold and ts < session_start


def is_chat_fresh(
    *,
    payload_ts: float | None,
    session_start: float,
    now: float,
    window: float,
) -> bool:
    """Recency gate: young enough *and* written after our session started."""
    if payload_ts is None:
        return False
    return (now - payload_ts) < window and payload_ts > session_start


def interpolation_progress(now: float, start_time: float, duration: float) -> float:
    if duration <= 0:
        return 1.0
    return min(1.0, max(0.0, (now - start_time) / duration))


def ease_out_cubic(progress: float) -> float:
    return 1.0 - (1.0 - progress) ** 3


def lerp(start: float, end: float, t: float) -> float:
    return start + (end - start) * t


class EvictionVerdict(StrEnum):
    KEEP = "keep"
    EVICT = "evict"


@dataclass(frozen=True, slots=True)
class EvictionDecision:
    verdict: EvictionVerdict
    reason: str

    @property
    def evict(self) -> bool:
        return self.verdict is EvictionVerdict.EVICT


def eviction_decision(
    *,
    now: float,
    last_update: float | None,
    last_seen: float | None,
    session_start: float | None,
    recent_activity_threshold: float,
    base_stale_threshold: float,
    long_session_threshold: float,
    max_stale_threshold: float,
) -> EvictionDecision:
    """Tiered staleness policy.

    - updated within ``recent_activity_threshold``: keep
    - idle or unseen beyond ``max_stale_threshold``: evict
    - idle beyond ``base_stale_threshold``: evict, unless the session has
      lasted longer than ``long_session_threshold`` (likely a backgrounded
      tab), which keeps it until the hard maximum
    """
    since_update = now - (last_update if last_update is not None else (last_seen or 0.0))
    since_seen = now - (last_seen or 0.0)

    if since_update < recent_activity_threshold:
        return EvictionDecision(EvictionVerdict.KEEP, "recent activity")
    if since_update > max_stale_threshold:
        return EvictionDecision(EvictionVerdict.EVICT, "no updates beyond maximum idle time")
    if since_seen > max_stale_threshold:
        return EvictionDecision(EvictionVerdict.EVICT, "not seen beyond maximum idle time")
    if since_update > base_stale_threshold:
        session_duration = now - (session_start if session_start is not None else now)
        if session_duration > long_session_threshold:
            return EvictionDecision(EvictionVerdict.KEEP, "idle long session within grace period")
        return EvictionDecision(EvictionVerdict.EVICT, "idle timeout exceeded")
    return EvictionDecision(EvictionVerdict.KEEP, "idle within grace period")
