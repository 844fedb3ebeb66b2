from __future__ import annotations

import asyncio

import pytest

from areasync._scheduler import Scheduler
from areasync.config import SyncConfig
from areasync.evictor import StaleSessionEvictor
from areasync.models.player import RemotePlayerRecord
from areasync.state.history import BoundedHistory
from areasync.state.registry import RemoteRegistry


def _record(session_id: str, *, last_update: float, session_start: float) -> RemotePlayerRecord:
    return RemotePlayerRecord(
        session_id=session_id,
        username=session_id,
        x=0.0,
        y=0.0,
        session_start=session_start,
        last_seen=last_update,
        last_update=last_update,
        message_history=BoundedHistory(100),
    )


class _Remover:
    def __init__(self, registry: RemoteRegistry) -> None:
        self.registry = registry
        self.calls: list[tuple[str, str]] = []

    def __call__(self, session_id: str, *, reason: str) -> bool:
        self.calls.append((session_id, reason))
        return self.registry.remove(session_id) is not None


@pytest.mark.asyncio
async def test_sweep_applies_tiered_thresholds(clock) -> None:
    now = clock()
    registry = RemoteRegistry()
    registry.put(_record("active", last_update=now - 5, session_start=now - 50))
    registry.put(_record("idle-short", last_update=now - 150, session_start=now - 200))
    registry.put(_record("idle-long", last_update=now - 150, session_start=now - 3600))
    registry.put(_record("gone", last_update=now - 700, session_start=now - 3600))
    remover = _Remover(registry)
    evictor = StaleSessionEvictor(SyncConfig(), registry, remover, clock=clock, scheduler=Scheduler())

    evicted = evictor.sweep()

    assert sorted(evicted) == ["gone", "idle-short"]
    assert sorted(registry.session_ids()) == ["active", "idle-long"]
    assert dict(remover.calls)["idle-short"] == "idle timeout exceeded"


@pytest.mark.asyncio
async def test_periodic_sweep_runs_until_stopped(clock) -> None:
    now = clock()
    registry = RemoteRegistry()
    registry.put(_record("gone", last_update=now - 700, session_start=now - 3600))
    scheduler = Scheduler()
    evictor = StaleSessionEvictor(
        SyncConfig(eviction_period=0.01),
        registry,
        _Remover(registry),
        clock=clock,
        scheduler=scheduler,
    )

    evictor.start()
    assert evictor.running
    await asyncio.sleep(0.05)
    assert len(registry) == 0

    evictor.stop()
    assert not evictor.running
    assert scheduler.pending_timers == 0


@pytest.mark.asyncio
async def test_failing_sweep_keeps_timer_alive(clock) -> None:
    scheduler = Scheduler()
    registry = RemoteRegistry()

    def _boom(_session_id: str, *, reason: str) -> bool:
        raise RuntimeError(reason)

    registry.put(_record("gone", last_update=clock() - 700, session_start=clock() - 3600))
    evictor = StaleSessionEvictor(
        SyncConfig(eviction_period=0.01),
        registry,
        _boom,
        clock=clock,
        scheduler=scheduler,
    )

    evictor.start()
    await asyncio.sleep(0.05)

    assert evictor.running
    evictor.stop()
