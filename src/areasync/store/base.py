"""Shared presence store interface.

Any keyed pub/sub store with disconnect detection can back the engine:
a managed realtime database, an MQTT broker with retained messages and
last-will, a WebSocket broker with liveness tracking, and so on.
"""

from __future__ import annotations

from typing import Any, Protocol

from areasync.state.events import StoreCallback, Unsubscribe


class PresenceStore(Protocol):
    """Structural store interface used by the engine.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.  Implementations stamp a
    monotonic ``ts`` (epoch milliseconds) on every write and merge.
    """

    async def write(self, area_id: str, session_id: str, record: dict[str, Any]) -> None:
        """Replace the session's record (used once, at join)."""
        ...

    async def merge(self, area_id: str, session_id: str, partial: dict[str, Any]) -> None:
        """Shallow-merge *partial* into the session's record."""
        ...

    async def remove(self, area_id: str, session_id: str) -> None:
        """Delete the session's record."""
        ...

    async def register_remove_on_disconnect(self, area_id: str, session_id: str) -> None:
        """Ask the store to delete the record if this client disconnects silently."""
        ...

    async def transactional_clear(self, area_id: str, session_id: str, expected_message_id: str) -> bool:
        """Clear the ephemeral chat fields only if ``messageId`` still matches.

        Returns whether the clear was committed.
        """
        ...

    def subscribe(self, area_id: str, callback: StoreCallback) -> Unsubscribe:
        """Deliver add/change/remove of every child record in the area."""
        ...
