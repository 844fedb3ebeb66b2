from __future__ import annotations

import pytest

from areasync.config import ChatArchiveConfig, MqttStoreConfig, SyncConfig
from areasync.exceptions import AreaSyncConfigError


def test_sync_config_defaults() -> None:
    config = SyncConfig()

    assert config.min_publish_interval == 0.1
    assert config.heartbeat_interval == 5.0
    assert config.interpolation_duration == 0.9
    assert config.chat_max_length == 280
    assert config.global_history_capacity == 500
    assert config.max_stale_threshold == 600.0
    assert config.default_area == "beach"


def test_sync_config_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AREASYNC_HEARTBEAT_INTERVAL", "3")
    monkeypatch.setenv("AREASYNC_CHAT_MAX_LENGTH", "120")
    monkeypatch.setenv("AREASYNC_EVICTION_ENABLED", "off")
    monkeypatch.setenv("AREASYNC_DEFAULT_AREA", "cave")

    config = SyncConfig.from_env(ping_window=5)

    assert config.heartbeat_interval == 3.0
    assert config.chat_max_length == 120
    assert config.eviction_enabled is False
    assert config.default_area == "cave"
    assert config.ping_window == 5


def test_explicit_overrides_beat_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AREASYNC_HEARTBEAT_INTERVAL", "3")

    assert SyncConfig.from_env(heartbeat_interval=7.0).heartbeat_interval == 7.0


def test_invalid_env_value_raises_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AREASYNC_PING_WINDOW", "lots")

    with pytest.raises(AreaSyncConfigError):
        SyncConfig.from_env()


def test_threshold_ordering_is_validated() -> None:
    with pytest.raises(AreaSyncConfigError):
        SyncConfig(base_stale_threshold=700.0)
    with pytest.raises(AreaSyncConfigError):
        SyncConfig(heartbeat_interval=0.05)
    with pytest.raises(AreaSyncConfigError):
        SyncConfig(chat_max_length=0)


def test_mqtt_store_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AREASYNC_MQTT_HOST", "broker.example.com")
    monkeypatch.setenv("AREASYNC_MQTT_PORT", "8883")
    monkeypatch.setenv("AREASYNC_MQTT_TLS", "true")

    config = MqttStoreConfig.from_env()

    assert config.host == "broker.example.com"
    assert config.port == 8883
    assert config.tls is True
    assert config.topic_prefix == "areasync"


def test_chat_archive_config_requires_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AREASYNC_CHAT_ARCHIVE_BASE_URL", raising=False)

    with pytest.raises(AreaSyncConfigError):
        ChatArchiveConfig.from_env()

    monkeypatch.setenv("AREASYNC_CHAT_ARCHIVE_BASE_URL", "https://chat.example.com/api")
    assert ChatArchiveConfig.from_env().base_url == "https://chat.example.com/api"
