#!/usr/bin/env python3
"""Live presence probe for an MQTT-backed area.

Connects to the broker configured by ``AREASYNC_MQTT_*`` environment
variables, joins an area (as an observer, or as a participant when
``--session-id`` is given) and prints every remote chat, typing,
projectile and removal event plus a periodic roster.

Use this to check that clients in an area see each other and that
disconnect cleanup works.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from areasync import ChatDisplay, MqttStoreConfig, PresenceEngine, PresenceHooks, ProjectileFired, SyncConfig  # noqa: E402
from areasync.store.mqtt import MqttPresenceStore  # noqa: E402

_LOG = logging.getLogger("presence_probe")


@dataclass
class ProbeStats:
    started_at: float
    chats: int = 0
    projectiles: int = 0
    removals: int = 0
    typing_changes: int = 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Live presence probe for an areasync MQTT area.",
    )
    parser.add_argument(
        "--area",
        default=None,
        help="Area to join (defaults to AREASYNC_DEFAULT_AREA or 'beach').",
    )
    parser.add_argument(
        "--session-id",
        default=None,
        help="Join as a participant with this session id (default: observe only).",
    )
    parser.add_argument(
        "--username",
        default="probe",
        help="Display name used with --session-id.",
    )
    parser.add_argument(
        "--chat",
        default=None,
        help="Send this chat message once after joining (requires --session-id).",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--roster-seconds",
        type=int,
        default=10,
        help="Print the list of present sessions each N seconds.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _build_hooks(stats: ProbeStats) -> PresenceHooks:
    def on_chat(display: ChatDisplay) -> None:
        stats.chats += 1
        print(f"[probe] chat {display.username} ({display.session_id}) @ ({display.x:.0f},{display.y:.0f}): {display.text}")

    def on_typing(session_id: str, typing: bool, _x: float, _y: float) -> None:
        stats.typing_changes += 1
        print(f"[probe] typing {session_id} -> {typing}")

    def on_projectile(event: ProjectileFired) -> None:
        stats.projectiles += 1
        print(
            f"[probe] projectile {event.session_id} from ({event.start_x:.0f},{event.start_y:.0f}) "
            f"to ({event.target_x},{event.target_y})"
        )

    def on_removed(session_id: str) -> None:
        stats.removals += 1
        print(f"[probe] removed {session_id}")

    return PresenceHooks(
        on_chat_displayed=on_chat,
        on_typing_changed=on_typing,
        on_projectile_fired=on_projectile,
        on_player_removed=on_removed,
    )


def _print_roster(engine: PresenceEngine) -> None:
    players = engine.get_remote_players()
    print(f"[probe] {len(players)} remote session(s) in {engine.current_area}, ping={engine.get_ping()}ms")
    for player in players:
        idle = time.time() - player.last_update
        print(f"[probe]   {player.session_id:<24} {player.username:<16} ({player.x:.0f},{player.y:.0f}) idle={idle:.1f}s")


def _print_summary(stats: ProbeStats) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_seconds: {runtime:.1f}")
    print(f"[probe]   chats          : {stats.chats}")
    print(f"[probe]   projectiles    : {stats.projectiles}")
    print(f"[probe]   typing_changes : {stats.typing_changes}")
    print(f"[probe]   removals       : {stats.removals}")


async def _run(args: argparse.Namespace) -> int:
    sync_config = SyncConfig.from_env()
    store_config = MqttStoreConfig.from_env()
    stats = ProbeStats(started_at=time.time())
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    async with MqttPresenceStore(store_config, logger=_LOG) as store:
        async with PresenceEngine(store, config=sync_config, hooks=_build_hooks(stats)) as engine:
            if args.session_id:
                engine.initialize(args.session_id, args.username)
            await engine.join_area(args.area)
            print(f"[probe] Joined {engine.current_area} on {store_config.host}:{store_config.port}")

            if args.chat:
                if not args.session_id:
                    print("[probe] --chat requires --session-id; skipping", file=sys.stderr)
                else:
                    await engine.send_chat(args.chat)

            last_roster = time.time()
            last_frame = time.monotonic()
            while not stop.is_set():
                now = time.time()
                if args.duration > 0 and now - stats.started_at >= args.duration:
                    print(f"[probe] Reached --duration={args.duration}s, stopping.")
                    break
                frame = time.monotonic()
                engine.tick(frame - last_frame)
                last_frame = frame
                if args.roster_seconds > 0 and now - last_roster >= args.roster_seconds:
                    _print_roster(engine)
                    last_roster = now
                try:
                    await asyncio.wait_for(stop.wait(), timeout=0.1)
                except TimeoutError:
                    pass

    _print_summary(stats)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        print(f"[probe] Failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
