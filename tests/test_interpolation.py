from __future__ import annotations

import pytest

from areasync.config import SyncConfig
from areasync.interpolation import InterpolationDriver
from areasync.models.player import RemotePlayerRecord
from areasync.state.history import BoundedHistory

_T0 = 1_770_000_000.0


def _record(x: float = 100.0, y: float = 100.0) -> RemotePlayerRecord:
    return RemotePlayerRecord(
        session_id="remote",
        username="Bea",
        x=x,
        y=y,
        session_start=_T0,
        last_seen=_T0,
        last_update=_T0,
        message_history=BoundedHistory(100),
    )


def test_record_eases_toward_target_and_holds() -> None:
    driver = InterpolationDriver(SyncConfig())
    record = _record()
    record.set_target(140.0, 100.0, _T0)

    positions = []
    for frame in range(1, 60):
        now = _T0 + frame / 60
        driver.step(record, 1 / 60, now)
        positions.append(record.x)

    # Monotonic, never overshooting.
    assert positions == sorted(positions)
    assert all(100.0 <= x <= 140.0 for x in positions)
    assert record.y == 100.0

    driver.step(record, 1 / 60, _T0 + 0.9)
    assert (record.x, record.y) == (140.0, 100.0)
    assert not record.interpolating

    driver.step(record, 1 / 60, _T0 + 2.0)
    assert (record.x, record.y) == (140.0, 100.0)


def test_midpoint_follows_ease_out_cubic() -> None:
    driver = InterpolationDriver(SyncConfig())
    record = _record()
    record.set_target(140.0, 100.0, _T0)

    driver.step(record, 0.0, _T0 + 0.45)

    assert record.x == pytest.approx(135.0)


def test_new_target_restarts_from_rendered_position() -> None:
    driver = InterpolationDriver(SyncConfig())
    record = _record()
    record.set_target(140.0, 100.0, _T0)
    driver.step(record, 0.0, _T0 + 0.45)

    record.set_target(200.0, 100.0, _T0 + 0.45)

    assert record.interp_start_x == pytest.approx(135.0)
    driver.step(record, 0.0, _T0 + 1.5)
    assert record.x == 200.0


def test_long_silence_snaps_instead_of_creeping() -> None:
    driver = InterpolationDriver(SyncConfig())
    record = _record()
    record.set_target(400.0, 100.0, _T0)
    record.interp_start_time = _T0 + 20.0
    record.last_seen = _T0

    driver.step(record, 1 / 60, _T0 + 20.1)

    assert record.x == 400.0
    assert not record.interpolating


def test_body_rotation_advances_with_spin_rate() -> None:
    driver = InterpolationDriver(SyncConfig())
    spinning = _record()
    spinning.body_spin_rate = 1.3
    idle = _record()

    driver.advance([spinning, idle], 0.5, _T0)

    assert spinning.body_rotation == pytest.approx(0.65)
    assert idle.body_rotation == 0.0
