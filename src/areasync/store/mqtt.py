"""MQTT-backed presence store.

Each session's record is a retained JSON message on
``<prefix>/areas/<area>/players/<session>``.  The broker's retained
messages give new subscribers a replay of every present session, and the
MQTT last-will (an empty retained payload) deletes the record when a
client disappears without leaving.

The paho network loop runs on its own thread; inbound messages are
marshalled onto the asyncio loop with ``call_soon_threadsafe`` so store
callbacks always execute on the engine's thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from areasync._constants import EPHEMERAL_CHAT_FIELDS, MESSAGE_ID_FIELD, SERVER_TIMESTAMP_FIELD
from areasync._redact import redact_for_log
from areasync.config import MqttStoreConfig
from areasync.exceptions import PresenceStoreError
from areasync.state.events import StoreCallback, StoreEventKind, Unsubscribe

_PUBLISH_QOS = 1
_PUBLISH_TIMEOUT_S = 10.0


@dataclass(eq=False)
class _Subscription:
    area_id: str
    callback: StoreCallback
    active: bool = True


@dataclass(frozen=True)
class PresenceMessage:
    """A decoded inbound presence message."""

    area_id: str
    session_id: str
    record: dict[str, Any] | None


def parse_presence_topic(topic: str, prefix: str) -> tuple[str, str] | None:
    """Split ``<prefix>/areas/<area>/players/<session>`` into (area, session)."""
    head = f"{prefix.rstrip('/')}/areas/"
    if not topic.startswith(head):
        return None
    parts = topic[len(head) :].split("/")
    if len(parts) != 3 or parts[1] != "players" or not parts[0] or not parts[2]:
        return None
    return parts[0], parts[2]


def decode_presence_message(topic: str, payload: bytes, prefix: str) -> PresenceMessage | None:
    """Decode a raw MQTT message; ``record`` is ``None`` for removals.

    Returns ``None`` for foreign topics and undecodable payloads.
    """
    parsed_topic = parse_presence_topic(topic, prefix)
    if parsed_topic is None:
        return None
    area_id, session_id = parsed_topic
    if not payload:
        return PresenceMessage(area_id=area_id, session_id=session_id, record=None)
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(decoded, dict):
        return None
    return PresenceMessage(area_id=area_id, session_id=session_id, record=decoded)


class MqttPresenceStore:
    """Threaded paho-mqtt :class:`~areasync.store.base.PresenceStore`.

    ``merge`` and ``transactional_clear`` operate on the locally cached copy
    of records this client wrote; only the owning session writes its own
    record, so the cache is authoritative for it.
    """

    def __init__(
        self,
        config: MqttStoreConfig,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._connected = False
        self._subscriptions: list[_Subscription] = []
        self._own_records: dict[tuple[str, str], dict[str, Any]] = {}
        self._seen: set[tuple[str, str]] = set()
        self._will: tuple[str, str] | None = None
        self._last_ts = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    def player_topic(self, area_id: str, session_id: str) -> str:
        return f"{self._config.topic_prefix.rstrip('/')}/areas/{area_id}/players/{session_id}"

    def area_filter(self, area_id: str) -> str:
        return f"{self._config.topic_prefix.rstrip('/')}/areas/{area_id}/players/+"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect to the broker and start the network loop."""
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        await loop.run_in_executor(None, self._start)

    async def close(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        await loop.run_in_executor(None, self._stop)

    async def __aenter__(self) -> MqttPresenceStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _start(self) -> None:
        self._stop()
        config = self._config
        self._logger.debug("MQTT presence store connecting config=%s", redact_for_log(asdict(config)))
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.username:
            client.username_pw_set(config.username, config.password)
        if config.tls:
            client.tls_set()
        if self._will is not None:
            client.will_set(self.player_topic(*self._will), payload=None, qos=_PUBLISH_QOS, retain=True)

        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect

        client.connect(config.host, config.port, keepalive=config.keepalive)
        client.loop_start()
        self._client = client
        self._logger.debug("MQTT network loop started")

    def _stop(self) -> None:
        client = self._client
        self._client = None
        was_connected = self._connected
        self._connected = False
        if client is None:
            return
        try:
            if was_connected:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            self._logger.warning("MQTT connect failed: %s", reason_code)
            return
        self._connected = True
        self._logger.debug("MQTT connected reason=%s", reason_code)
        for area_id in {sub.area_id for sub in self._subscriptions if sub.active}:
            client.subscribe(self.area_filter(area_id), qos=_PUBLISH_QOS)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        self._connected = False
        self._logger.debug("MQTT disconnected: %s", reason_code)

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            message = decode_presence_message(msg.topic, msg.payload, self._config.topic_prefix)
        except Exception:
            self._logger.debug("MQTT presence payload parse failure topic=%s", msg.topic, exc_info=True)
            return
        if message is None:
            self._logger.debug("Ignoring MQTT message topic=%s", msg.topic)
            return
        loop = self._loop
        if loop is None:
            return
        loop.call_soon_threadsafe(self._dispatch, message)

    # ------------------------------------------------------------------
    # Dispatch (loop thread)
    # ------------------------------------------------------------------

    def _dispatch(self, message: PresenceMessage) -> None:
        key = (message.area_id, message.session_id)
        if message.record is None:
            if key not in self._seen:
                return
            self._seen.discard(key)
            kind = StoreEventKind.REMOVED
        else:
            kind = StoreEventKind.CHANGED if key in self._seen else StoreEventKind.ADDED
            self._seen.add(key)

        for subscription in list(self._subscriptions):
            if not subscription.active or subscription.area_id != message.area_id:
                continue
            try:
                subscription.callback(kind, message.session_id, message.record)
            except Exception:
                self._logger.debug("Store subscriber failed for %s %s", kind, message.session_id, exc_info=True)

    # ------------------------------------------------------------------
    # PresenceStore
    # ------------------------------------------------------------------

    async def write(self, area_id: str, session_id: str, record: dict[str, Any]) -> None:
        stored = dict(record)
        stored[SERVER_TIMESTAMP_FIELD] = self._next_ts()
        await self._publish("write", area_id, session_id, stored)
        self._own_records[(area_id, session_id)] = stored

    async def merge(self, area_id: str, session_id: str, partial: dict[str, Any]) -> None:
        merged = dict(self._own_records.get((area_id, session_id), {}))
        merged.update(partial)
        merged[SERVER_TIMESTAMP_FIELD] = self._next_ts()
        await self._publish("merge", area_id, session_id, merged)
        self._own_records[(area_id, session_id)] = merged

    async def remove(self, area_id: str, session_id: str) -> None:
        self._own_records.pop((area_id, session_id), None)
        await self._publish("remove", area_id, session_id, None)

    async def register_remove_on_disconnect(self, area_id: str, session_id: str) -> None:
        """Install the last-will; an already-open connection is re-established to apply it."""
        self._will = (area_id, session_id)
        client = self._client
        if client is None:
            return
        client.will_set(self.player_topic(area_id, session_id), payload=None, qos=_PUBLISH_QOS, retain=True)
        if self._connected:
            loop = self._loop or asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, client.reconnect)
            except (OSError, ValueError) as exc:
                raise PresenceStoreError(
                    f"Reconnect to apply last-will failed: {exc}",
                    operation="register_remove_on_disconnect",
                    session_id=session_id,
                ) from exc

    async def transactional_clear(self, area_id: str, session_id: str, expected_message_id: str) -> bool:
        current = self._own_records.get((area_id, session_id))
        if current is None or current.get(MESSAGE_ID_FIELD) != expected_message_id:
            return False
        cleared = dict(current)
        for field_name in EPHEMERAL_CHAT_FIELDS:
            cleared[field_name] = None
        cleared[SERVER_TIMESTAMP_FIELD] = self._next_ts()
        await self._publish("transactional_clear", area_id, session_id, cleared)
        self._own_records[(area_id, session_id)] = cleared
        return True

    def subscribe(self, area_id: str, callback: StoreCallback) -> Unsubscribe:
        subscription = _Subscription(area_id=area_id, callback=callback)
        first_for_area = not any(sub.area_id == area_id and sub.active for sub in self._subscriptions)
        self._subscriptions.append(subscription)
        client = self._client
        if first_for_area and client is not None and self._connected:
            client.subscribe(self.area_filter(area_id), qos=_PUBLISH_QOS)

        def _unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            if any(sub.area_id == area_id for sub in self._subscriptions):
                return
            self._seen = {key for key in self._seen if key[0] != area_id}
            current = self._client
            if current is not None and self._connected:
                current.unsubscribe(self.area_filter(area_id))

        return _unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_ts(self) -> int:
        now_ms = int(self._clock() * 1000)
        self._last_ts = max(self._last_ts + 1, now_ms)
        return self._last_ts

    async def _publish(
        self,
        operation: str,
        area_id: str,
        session_id: str,
        record: dict[str, Any] | None,
    ) -> None:
        client = self._client
        if client is None or not self._connected:
            raise PresenceStoreError("MQTT presence store is not connected", operation=operation, session_id=session_id)
        payload = None if record is None else json.dumps(record, separators=(",", ":"))
        info = client.publish(self.player_topic(area_id, session_id), payload=payload, qos=_PUBLISH_QOS, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PresenceStoreError(
                f"MQTT publish failed rc={info.rc}",
                operation=operation,
                session_id=session_id,
            )
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, info.wait_for_publish, _PUBLISH_TIMEOUT_S)
        except (RuntimeError, ValueError) as exc:
            raise PresenceStoreError(
                f"MQTT publish not acknowledged: {exc}",
                operation=operation,
                session_id=session_id,
            ) from exc
        if not info.is_published():
            raise PresenceStoreError("MQTT publish timed out", operation=operation, session_id=session_id)
