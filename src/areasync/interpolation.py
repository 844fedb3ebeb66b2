"""Per-frame easing of remote positions toward their latest target."""

from __future__ import annotations

from collections.abc import Iterable

from areasync.config import SyncConfig
from areasync.models.player import RemotePlayerRecord
from areasync.state.policy import ease_out_cubic, interpolation_progress, lerp


class InterpolationDriver:
    """Advances every interpolating record by one frame.

    Runs on the render thread/loop only; it never blocks and never touches
    the store.
    """

    def __init__(self, config: SyncConfig) -> None:
        self._duration = config.interpolation_duration
        self._stale_gap = config.interpolation_stale_gap

    def advance(self, records: Iterable[RemotePlayerRecord], dt: float, now: float) -> None:
        for record in records:
            self.step(record, dt, now)

    def step(self, record: RemotePlayerRecord, dt: float, now: float) -> None:
        if record.interpolating:
            assert record.target_x is not None and record.target_y is not None  # noqa: S101
            start_time = record.interp_start_time if record.interp_start_time is not None else now
            progress = interpolation_progress(now, start_time, self._duration)
            if progress >= 1.0 or now - record.last_seen > self._stale_gap:
                record.snap_to_target()
            else:
                eased = ease_out_cubic(progress)
                start_x = record.interp_start_x if record.interp_start_x is not None else record.x
                start_y = record.interp_start_y if record.interp_start_y is not None else record.y
                record.x = lerp(start_x, record.target_x, eased)
                record.y = lerp(start_y, record.target_y, eased)

        if record.body_spin_rate and dt > 0:
            record.body_rotation += record.body_spin_rate * dt
