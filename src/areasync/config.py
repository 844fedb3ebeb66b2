"""Engine and store configuration for areasync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from areasync.exceptions import AreaSyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _coerce_env(raw: str, annotation: Any) -> Any:
    if annotation in (float, "float"):
        return float(raw)
    if annotation in (int, "int"):
        return int(raw)
    if annotation in (bool, "bool"):
        return _env_bool(raw, False)
    return raw


def _fields_from_env(cls: type, prefix: str, overrides: dict[str, Any]) -> dict[str, Any]:
    """Read ``<prefix><FIELD_NAME>`` for every dataclass field not overridden."""
    env = os.environ
    kwargs: dict[str, Any] = {}
    for item in dataclasses.fields(cls):
        if item.name in overrides:
            continue
        raw = env.get(f"{prefix}{item.name.upper()}")
        if raw is None:
            continue
        try:
            kwargs[item.name] = _coerce_env(raw, item.type)
        except ValueError as exc:
            raise AreaSyncConfigError(f"Invalid value for {prefix}{item.name.upper()}: {raw!r}") from exc
    kwargs.update(overrides)
    return kwargs


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Tuning constants for the presence engine.

    All durations are in seconds.  The defaults are empirically tuned;
    keep their relative ordering when changing them.

    Parameters
    ----------
    min_publish_interval : float
        Minimum spacing between state-triggered writes.
    heartbeat_interval : float
        Idle period after which a liveness-only write is sent.
    position_epsilon : float
        Movement (in world pixels) below which position is considered unchanged.
    heading_epsilon : float
        Heading change (radians) below which heading is considered unchanged.
    max_speed : float
        Speed (px/s) mapped to the highest ``moveState``.
    interpolation_duration : float
        Time a remote record takes to ease from its start to its target.
    interpolation_stale_gap : float
        Gap since a record was last seen after which interpolation snaps.
    stale_data_threshold : float
        Age beyond which a first sighting from before our session is ignored.
    chat_max_length : int
        Outbound chat messages are truncated to this many characters.
    chat_recent_window : float
        Inbound chat older than this is never displayed.
    chat_rapid_duplicate_window : float
        Identical outbound messages within this window are dropped.
    chat_clear_delay : float
        Delay before the ephemeral chat field is cleared from the store.
    self_echo_ttl : float
        How long an outbound message id is remembered to ignore its echo.
    chat_bubble_duration : float
        Display duration passed to the chat-displayed hook.
    record_history_capacity : int
        Per-record chat id history size.
    global_history_capacity : int
        Engine-wide chat id history size.
    recent_activity_threshold : float
        Records updated more recently than this are never evicted.
    base_stale_threshold : float
        Idle time after which a short-lived session is evicted.
    long_session_threshold : float
        Session duration beyond which the longer grace period applies.
    max_stale_threshold : float
        Idle time after which any session is evicted.
    eviction_period : float
        Interval between eviction sweeps.
    eviction_enabled : bool
        Run the periodic eviction sweep while joined.
    ping_window : int
        Number of round-trip samples in the rolling ping average.
    default_area : str
        Area joined when none is given.
    """

    min_publish_interval: float = 0.1
    heartbeat_interval: float = 5.0
    position_epsilon: float = 1.0
    heading_epsilon: float = 0.01
    max_speed: float = 200.0
    interpolation_duration: float = 0.9
    interpolation_stale_gap: float = 10.0
    stale_data_threshold: float = 30.0
    chat_max_length: int = 280
    chat_recent_window: float = 2.0
    chat_rapid_duplicate_window: float = 1.0
    chat_clear_delay: float = 0.1
    self_echo_ttl: float = 10.0
    chat_bubble_duration: float = 4.0
    record_history_capacity: int = 100
    global_history_capacity: int = 500
    recent_activity_threshold: float = 30.0
    base_stale_threshold: float = 120.0
    long_session_threshold: float = 300.0
    max_stale_threshold: float = 600.0
    eviction_period: float = 15.0
    eviction_enabled: bool = True
    ping_window: int = 10
    default_area: str = "beach"

    def __post_init__(self) -> None:
        positive = (
            "min_publish_interval",
            "heartbeat_interval",
            "max_speed",
            "interpolation_duration",
            "chat_max_length",
            "chat_recent_window",
            "record_history_capacity",
            "global_history_capacity",
            "eviction_period",
            "ping_window",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise AreaSyncConfigError(f"{name} must be positive, got {getattr(self, name)!r}")
        if not self.recent_activity_threshold <= self.base_stale_threshold <= self.max_stale_threshold:
            raise AreaSyncConfigError(
                "eviction thresholds must satisfy recent_activity <= base_stale <= max_stale, got "
                f"{self.recent_activity_threshold}, {self.base_stale_threshold}, {self.max_stale_threshold}"
            )
        if self.heartbeat_interval <= self.min_publish_interval:
            raise AreaSyncConfigError("heartbeat_interval must exceed min_publish_interval")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``AREASYNC_*`` environment variables.

        ``AREASYNC_HEARTBEAT_INTERVAL=3`` overrides ``heartbeat_interval`` and
        so on.  Explicit keyword arguments take precedence over env vars.
        """
        return cls(**_fields_from_env(cls, "AREASYNC_", overrides))


@dataclasses.dataclass(frozen=True)
class MqttStoreConfig:
    """Connection settings for :class:`areasync.store.mqtt.MqttPresenceStore`.

    Parameters
    ----------
    host : str
        Broker hostname.
    port : int
        Broker port.
    tls : bool
        Wrap the connection in TLS.
    username, password : str or None
        Broker credentials.
    keepalive : int
        MQTT keepalive in seconds; also bounds how fast the broker notices a
        silent disconnect and publishes the last will.
    topic_prefix : str
        Root of the presence topic tree.
    client_id : str
        MQTT client id; empty lets the broker assign one.
    """

    host: str = "localhost"
    port: int = 1883
    tls: bool = False
    username: str | None = None
    password: str | None = None
    keepalive: int = 120
    topic_prefix: str = "areasync"
    client_id: str = ""

    @classmethod
    def from_env(cls, **overrides: Any) -> MqttStoreConfig:
        """Create configuration from ``AREASYNC_MQTT_*`` environment variables."""
        return cls(**_fields_from_env(cls, "AREASYNC_MQTT_", overrides))


@dataclasses.dataclass(frozen=True)
class ChatArchiveConfig:
    """Endpoint of the persistent chat collaborator.

    Parameters
    ----------
    base_url : str
        Base URL; messages are posted to ``<base_url>/message``.
    timeout : float
        Seconds before an archive request is abandoned.
    """

    base_url: str
    timeout: float = 3.0

    @classmethod
    def from_env(cls, **overrides: Any) -> ChatArchiveConfig:
        """Create configuration from ``AREASYNC_CHAT_ARCHIVE_*`` environment variables."""
        kwargs = _fields_from_env(cls, "AREASYNC_CHAT_ARCHIVE_", overrides)
        if not kwargs.get("base_url"):
            raise AreaSyncConfigError("AREASYNC_CHAT_ARCHIVE_BASE_URL is not set")
        return cls(**kwargs)
