"""Registry of remote session records.

The reconciler and evictor are the only writers.  Readers (rendering
collaborators) get an immutable snapshot that is rebuilt lazily after
each mutation.
"""

from __future__ import annotations

from collections.abc import Iterator

from areasync.models.player import RemotePlayerRecord


class RemoteRegistry:
    """At most one :class:`RemotePlayerRecord` per session id."""

    def __init__(self) -> None:
        self._records: dict[str, RemotePlayerRecord] = {}
        self._snapshot: tuple[RemotePlayerRecord, ...] | None = None

    def get(self, session_id: str) -> RemotePlayerRecord | None:
        return self._records.get(session_id)

    def put(self, record: RemotePlayerRecord) -> None:
        self._records[record.session_id] = record
        self._snapshot = None

    def remove(self, session_id: str) -> RemotePlayerRecord | None:
        record = self._records.pop(session_id, None)
        if record is not None:
            self._snapshot = None
        return record

    def clear(self) -> None:
        for record in self._records.values():
            record.message_history.clear()
        self._records.clear()
        self._snapshot = None

    def snapshot(self) -> tuple[RemotePlayerRecord, ...]:
        """Cached view of all records, invalidated on every mutation."""
        if self._snapshot is None:
            self._snapshot = tuple(self._records.values())
        return self._snapshot

    def session_ids(self) -> list[str]:
        return list(self._records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RemotePlayerRecord]:
        return iter(self._records.values())
