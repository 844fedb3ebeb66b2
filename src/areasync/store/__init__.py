"""Shared presence store implementations."""

from areasync.store.base import PresenceStore
from areasync.store.memory import InMemoryPresenceStore

__all__ = ["InMemoryPresenceStore", "PresenceStore"]
