"""Custom exception hierarchy for areasync."""

from __future__ import annotations


class AreaSyncError(Exception):
    """Base exception for all areasync errors."""


class AreaSyncConfigError(AreaSyncError):
    """Invalid or missing configuration."""


class NotConnectedError(AreaSyncError):
    """Operation requires an initialized session that has joined an area."""


class InvalidChatMessageError(AreaSyncError):
    """Chat text is empty or not a string."""


class PresenceStoreError(AreaSyncError):
    """Shared presence store operation failed (network, broker, serialization)."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        session_id: str = "",
    ) -> None:
        self.operation = operation
        self.session_id = session_id
        super().__init__(message)


class ChatArchiveError(AreaSyncError):
    """Persistent chat collaborator rejected or failed a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message)
