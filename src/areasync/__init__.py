"""areasync - Realtime presence synchronization for shared game areas."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("areasync")
except PackageNotFoundError:
    __version__ = "0+local"
from areasync.archive import ChatArchive, HttpChatArchive
from areasync.config import ChatArchiveConfig, MqttStoreConfig, SyncConfig
from areasync.engine import PresenceEngine
from areasync.exceptions import (
    AreaSyncConfigError,
    AreaSyncError,
    ChatArchiveError,
    InvalidChatMessageError,
    NotConnectedError,
    PresenceStoreError,
)
from areasync.hooks import ChatDisplay, PresenceHooks, ProjectileFired
from areasync.models import (
    LocalPlayerState,
    OutboundWritePacket,
    PresenceUpdate,
    ProjectileEvent,
    RemotePlayerRecord,
)
from areasync.state.events import StoreEventKind
from areasync.store import InMemoryPresenceStore, PresenceStore

__all__ = [
    "__version__",
    "AreaSyncConfigError",
    "AreaSyncError",
    "ChatArchive",
    "ChatArchiveConfig",
    "ChatArchiveError",
    "ChatDisplay",
    "HttpChatArchive",
    "InMemoryPresenceStore",
    "InvalidChatMessageError",
    "LocalPlayerState",
    "MqttStoreConfig",
    "NotConnectedError",
    "OutboundWritePacket",
    "PresenceEngine",
    "PresenceHooks",
    "PresenceStore",
    "PresenceStoreError",
    "PresenceUpdate",
    "ProjectileEvent",
    "ProjectileFired",
    "RemotePlayerRecord",
    "StoreEventKind",
    "SyncConfig",
]
