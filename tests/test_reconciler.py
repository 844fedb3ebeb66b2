from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio

from areasync._scheduler import Scheduler
from areasync.config import SyncConfig
from areasync.hooks import ChatDisplay, PresenceHooks, ProjectileFired
from areasync.ingestion.chat import ChatDeduplicator
from areasync.ingestion.reconciler import Reconciler
from areasync.state.events import StoreEventKind
from areasync.state.registry import RemoteRegistry


class _Recorder:
    def __init__(self) -> None:
        self.chats: list[ChatDisplay] = []
        self.typing: list[tuple[str, bool]] = []
        self.projectiles: list[ProjectileFired] = []
        self.removed: list[str] = []

    def hooks(self) -> PresenceHooks:
        return PresenceHooks(
            on_chat_displayed=self.chats.append,
            on_typing_changed=lambda sid, typing, _x, _y: self.typing.append((sid, typing)),
            on_projectile_fired=self.projectiles.append,
            on_player_removed=self.removed.append,
        )


class _Rig:
    def __init__(self, clock) -> None:
        self.clock = clock
        self.scheduler = Scheduler()
        self.registry = RemoteRegistry()
        self.recorder = _Recorder()
        self.reconciler = Reconciler(
            config=SyncConfig(),
            registry=self.registry,
            dedup=ChatDeduplicator(SyncConfig(), self.scheduler),
            hooks=self.recorder.hooks(),
            clock=clock,
        )
        self.reconciler.local_session_id = "local"

    def ms(self, offset: float = 0.0) -> int:
        return round((self.clock() + offset) * 1000)

    def send(self, kind: str, session_id: str, record: dict[str, Any] | None) -> None:
        self.reconciler.on_store_event(kind, session_id, record)

    def position(self, x: float, y: float, **extra: Any) -> dict[str, Any]:
        record: dict[str, Any] = {"username": "Bea", "ax": x, "ay": y, "lastUpdate": self.ms()}
        record.update(extra)
        return record


@pytest_asyncio.fixture
async def rig(clock) -> AsyncIterator[_Rig]:
    rig = _Rig(clock)
    rig.clock.advance(1.0)
    yield rig
    rig.scheduler.cancel_all()


@pytest.mark.asyncio
async def test_first_sighting_places_record_directly(rig: _Rig) -> None:
    rig.send("added", "remote", rig.position(100, 100, moveState=2, color="#123456"))

    record = rig.registry.get("remote")
    assert record is not None
    assert (record.x, record.y) == (100.0, 100.0)
    assert not record.interpolating
    assert record.username == "Bea"
    assert record.color == "#123456"
    assert record.body_spin_rate == 0.75


@pytest.mark.asyncio
async def test_own_and_unknown_events_are_ignored(rig: _Rig) -> None:
    rig.send("added", "local", rig.position(1, 1))
    rig.send("moved", "remote", rig.position(1, 1))
    rig.send("added", "", rig.position(1, 1))

    assert len(rig.registry) == 0


@pytest.mark.asyncio
async def test_stale_snapshot_of_unknown_session_is_ignored(rig: _Rig) -> None:
    rig.send("added", "ghost", rig.position(5, 5, lastUpdate=rig.ms(-120)))

    assert "ghost" not in rig.registry


@pytest.mark.asyncio
async def test_change_sets_interpolation_target(rig: _Rig) -> None:
    rig.send("added", "remote", rig.position(100, 100))
    rig.clock.advance(0.1)
    rig.send("changed", "remote", rig.position(140, 100, angle=1.5, action="mining", miningNodeId="rock"))

    record = rig.registry.get("remote")
    assert record is not None
    assert (record.x, record.y) == (100.0, 100.0)
    assert (record.target_x, record.target_y) == (140.0, 100.0)
    assert record.interp_start_time == rig.clock()
    assert record.angle == 1.5
    assert record.action == "mining"
    assert record.mining_node_id == "rock"


@pytest.mark.asyncio
async def test_explicit_null_action_clears_and_absent_keeps(rig: _Rig) -> None:
    rig.send("added", "remote", rig.position(0, 0, action="mining"))
    rig.send("changed", "remote", rig.position(0, 0))
    record = rig.registry.get("remote")
    assert record is not None
    assert record.action == "mining"

    rig.send("changed", "remote", rig.position(0, 0, action=None))
    assert record.action is None


@pytest.mark.asyncio
async def test_malformed_fields_do_not_disturb_record(rig: _Rig) -> None:
    rig.send("added", "remote", rig.position(10, 10, angle=0.5))
    rig.send("changed", "remote", rig.position(20, 20, angle="north", moveState="fast"))

    record = rig.registry.get("remote")
    assert record is not None
    assert record.angle == 0.5
    assert record.target_x == 20.0


@pytest.mark.asyncio
async def test_removed_event_deletes_record_and_notifies(rig: _Rig) -> None:
    rig.send("added", "remote", rig.position(0, 0))
    rig.send(StoreEventKind.REMOVED, "remote", None)

    assert "remote" not in rig.registry
    assert rig.recorder.removed == ["remote"]

    rig.send("removed", "remote", None)
    assert rig.recorder.removed == ["remote"]


@pytest.mark.asyncio
async def test_heartbeat_refreshes_liveness_without_moving(rig: _Rig) -> None:
    rig.send("added", "remote", rig.position(10, 10))
    rig.clock.advance(5.0)
    rig.send("changed", "remote", {"lastUpdate": rig.ms()})

    record = rig.registry.get("remote")
    assert record is not None
    assert record.last_update == pytest.approx(rig.clock())
    assert record.last_seen == rig.clock()
    assert not record.interpolating


@pytest.mark.asyncio
async def test_position_less_update_for_unknown_session_is_ignored(rig: _Rig) -> None:
    rig.send("added", "remote", {"lastUpdate": rig.ms(), "chat": "hi"})

    assert len(rig.registry) == 0
    assert rig.recorder.chats == []


class TestChat:
    @pytest.mark.asyncio
    async def test_repeated_delivery_shows_one_bubble(self, rig: _Rig) -> None:
        rig.send("added", "remote", rig.position(0, 0))
        rig.clock.advance(0.1)
        chat = {"chat": "hello", "messageId": f"remote_hello_{rig.ms()}"}
        rig.send("changed", "remote", rig.position(0, 0, **chat))
        rig.clock.advance(0.05)
        rig.send("changed", "remote", rig.position(5, 0, **chat))

        assert [display.text for display in rig.recorder.chats] == ["hello"]
        assert rig.recorder.chats[0].username == "Bea"
        assert rig.recorder.chats[0].duration == 4.0

    @pytest.mark.asyncio
    async def test_replayed_chat_from_before_session_is_not_shown(self, rig: _Rig) -> None:
        old = rig.ms(-1.5)
        rig.send("added", "remote", {"username": "Bea", "ax": 0, "ay": 0, "lastUpdate": old, "chat": "earlier"})

        assert "remote" in rig.registry
        assert rig.recorder.chats == []

    @pytest.mark.asyncio
    async def test_uncleared_chat_is_not_revived_by_later_merges(self, rig: _Rig) -> None:
        leftover = {"chat": "earlier", "messageId": f"remote_earlier_{rig.ms(-30.0)}"}
        rig.send("added", "remote", rig.position(0, 0, **leftover))
        rig.clock.advance(0.1)
        rig.send("changed", "remote", rig.position(5, 0, **leftover))

        assert rig.recorder.chats == []


class TestTyping:
    @pytest.mark.asyncio
    async def test_hook_fires_on_change_only(self, rig: _Rig) -> None:
        rig.send("added", "remote", rig.position(0, 0))
        rig.send("changed", "remote", rig.position(0, 0, typing=True))
        rig.send("changed", "remote", rig.position(1, 0, typing=True))
        rig.send("changed", "remote", rig.position(2, 0, typing=False))

        assert rig.recorder.typing == [("remote", True), ("remote", False)]


class TestProjectile:
    def _event(self, rig: _Rig, offset: float = 0.0) -> dict[str, Any]:
        return {"type": "projectile", "timestamp": rig.ms(offset), "data": {"targetX": 300, "targetY": 40}}

    @pytest.mark.asyncio
    async def test_projectile_only_update_fires_at_last_known_position(self, rig: _Rig) -> None:
        rig.send("added", "remote", rig.position(100, 100))
        rig.send("changed", "remote", rig.position(140, 100))
        rig.send("changed", "remote", {"projectileEvent": self._event(rig)})

        assert len(rig.recorder.projectiles) == 1
        fired = rig.recorder.projectiles[0]
        assert (fired.start_x, fired.start_y) == (100.0, 100.0)
        assert (fired.target_x, fired.target_y) == (300.0, 40.0)

    @pytest.mark.asyncio
    async def test_projectile_from_unknown_sender_is_ignored(self, rig: _Rig) -> None:
        rig.send("changed", "stranger", {"projectileEvent": self._event(rig)})

        assert rig.recorder.projectiles == []
        assert "stranger" not in rig.registry

    @pytest.mark.asyncio
    async def test_redelivered_event_fires_once(self, rig: _Rig) -> None:
        rig.send("added", "remote", rig.position(0, 0))
        event = self._event(rig)
        rig.send("changed", "remote", rig.position(0, 0, projectileEvent=event))
        rig.clock.advance(0.2)
        rig.send("changed", "remote", rig.position(10, 0, projectileEvent=event))

        assert len(rig.recorder.projectiles) == 1

    @pytest.mark.asyncio
    async def test_event_older_than_session_is_not_replayed_on_join(self, rig: _Rig) -> None:
        rig.send("added", "remote", rig.position(0, 0, projectileEvent=self._event(rig, -5.0)))

        assert "remote" in rig.registry
        assert rig.recorder.projectiles == []

    @pytest.mark.asyncio
    async def test_other_event_types_are_ignored(self, rig: _Rig) -> None:
        rig.send("added", "remote", rig.position(0, 0))
        rig.send("changed", "remote", {"projectileEvent": {"type": "emote", "timestamp": rig.ms()}})

        assert rig.recorder.projectiles == []


@pytest.mark.asyncio
async def test_failing_hook_does_not_break_reconciliation(clock) -> None:
    def _boom(_display: ChatDisplay) -> None:
        raise RuntimeError("renderer gone")

    scheduler = Scheduler()
    registry = RemoteRegistry()
    reconciler = Reconciler(
        config=SyncConfig(),
        registry=registry,
        dedup=ChatDeduplicator(SyncConfig(), scheduler),
        hooks=PresenceHooks(on_chat_displayed=_boom),
        clock=clock,
    )
    clock.advance(1.0)
    now_ms = round(clock() * 1000)
    try:
        reconciler.on_store_event("added", "remote", {"ax": 1, "ay": 2, "lastUpdate": now_ms, "chat": "hi"})
    finally:
        scheduler.cancel_all()

    assert "remote" in registry
