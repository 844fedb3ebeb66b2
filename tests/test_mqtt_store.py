from __future__ import annotations

import asyncio
import json
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from areasync.config import MqttStoreConfig
from areasync.exceptions import PresenceStoreError
from areasync.state.events import StoreEventKind
from areasync.store.mqtt import MqttPresenceStore, decode_presence_message, parse_presence_topic


class _PublishInfo:
    def __init__(self, rc: int = mqtt.MQTT_ERR_SUCCESS) -> None:
        self.rc = rc

    def wait_for_publish(self, timeout: float | None = None) -> None:
        return None

    def is_published(self) -> bool:
        return True


class _FakeClient:
    def __init__(self) -> None:
        self.published: list[tuple[str, Any, int, bool]] = []
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.rc = mqtt.MQTT_ERR_SUCCESS

    def publish(self, topic: str, payload: Any = None, qos: int = 0, retain: bool = False) -> _PublishInfo:
        self.published.append((topic, payload, qos, retain))
        return _PublishInfo(self.rc)

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)


def _connected_store(clock) -> tuple[MqttPresenceStore, _FakeClient]:
    store = MqttPresenceStore(MqttStoreConfig(topic_prefix="game"), clock=clock)
    client = _FakeClient()
    # Bypass the network loop; only publish/subscribe are exercised.
    store._client = client  # type: ignore[assignment]
    store._connected = True  # type: ignore[attr-defined]
    return store, client


def test_parse_presence_topic() -> None:
    assert parse_presence_topic("game/areas/beach/players/s1", "game") == ("beach", "s1")
    assert parse_presence_topic("game/areas/beach/players/s1", "game/") == ("beach", "s1")
    assert parse_presence_topic("other/areas/beach/players/s1", "game") is None
    assert parse_presence_topic("game/areas/beach/items/s1", "game") is None
    assert parse_presence_topic("game/areas/beach/players/", "game") is None


def test_decode_presence_message() -> None:
    message = decode_presence_message("game/areas/beach/players/s1", b'{"ax": 1}', "game")
    assert message is not None
    assert message.record == {"ax": 1}

    removal = decode_presence_message("game/areas/beach/players/s1", b"", "game")
    assert removal is not None
    assert removal.record is None

    assert decode_presence_message("game/areas/beach/players/s1", b"not json", "game") is None
    assert decode_presence_message("game/areas/beach/players/s1", b"[1, 2]", "game") is None


@pytest.mark.asyncio
async def test_dispatch_maps_retained_messages_to_store_events(clock) -> None:
    store, client = _connected_store(clock)
    events: list[tuple[StoreEventKind, str]] = []
    store.subscribe("beach", lambda kind, sid, _record: events.append((kind, sid)))
    assert client.subscribed == ["game/areas/beach/players/+"]

    for payload in (b'{"ax": 1, "ay": 1}', b'{"ax": 2, "ay": 1}', b""):
        message = decode_presence_message("game/areas/beach/players/s1", payload, "game")
        assert message is not None
        store._dispatch(message)  # type: ignore[attr-defined]
    # Removal of an unknown session is not reported.
    unknown = decode_presence_message("game/areas/beach/players/s2", b"", "game")
    assert unknown is not None
    store._dispatch(unknown)  # type: ignore[attr-defined]

    assert events == [
        (StoreEventKind.ADDED, "s1"),
        (StoreEventKind.CHANGED, "s1"),
        (StoreEventKind.REMOVED, "s1"),
    ]


@pytest.mark.asyncio
async def test_merge_publishes_full_retained_record(clock) -> None:
    store, client = _connected_store(clock)

    await store.write("beach", "s1", {"username": "Ada", "ax": 1, "ay": 1})
    await store.merge("beach", "s1", {"ax": 9})

    topic, payload, qos, retain = client.published[-1]
    assert topic == "game/areas/beach/players/s1"
    assert qos == 1
    assert retain is True
    record = json.loads(payload)
    assert record["username"] == "Ada"
    assert record["ax"] == 9
    assert record["ts"] >= round(clock() * 1000)


@pytest.mark.asyncio
async def test_transactional_clear_uses_own_record_cache(clock) -> None:
    store, client = _connected_store(clock)
    await store.write("beach", "s1", {"chat": "hi", "messageId": "s1_hi_1"})

    assert await store.transactional_clear("beach", "s1", "s1_other_2") is False
    assert await store.transactional_clear("beach", "s1", "s1_hi_1") is True
    record = json.loads(client.published[-1][1])
    assert record["chat"] is None
    assert record["messageId"] is None


@pytest.mark.asyncio
async def test_remove_publishes_empty_retained_payload(clock) -> None:
    store, client = _connected_store(clock)

    await store.remove("beach", "s1")

    assert client.published[-1] == ("game/areas/beach/players/s1", None, 1, True)


@pytest.mark.asyncio
async def test_publish_failures_raise_store_error(clock) -> None:
    store, client = _connected_store(clock)
    client.rc = mqtt.MQTT_ERR_NO_CONN

    with pytest.raises(PresenceStoreError):
        await store.merge("beach", "s1", {"ax": 1})

    disconnected = MqttPresenceStore(MqttStoreConfig(), clock=clock)
    with pytest.raises(PresenceStoreError):
        await disconnected.write("beach", "s1", {})


@pytest.mark.asyncio
async def test_last_unsubscribe_releases_broker_subscription(clock) -> None:
    store, client = _connected_store(clock)
    first = store.subscribe("beach", lambda *_: None)
    second = store.subscribe("beach", lambda *_: None)
    assert client.subscribed == ["game/areas/beach/players/+"]

    first()
    assert client.unsubscribed == []
    second()
    assert client.unsubscribed == ["game/areas/beach/players/+"]
    await asyncio.sleep(0)
