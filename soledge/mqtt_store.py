from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import paho.mqtt.client as mqtt

from .config import Settings
from .errors import ConnectivityError, WriteError
from .store import Snapshot, Subscription, split_key

logger = logging.getLogger("mqtt-store")


class MqttStore:
    """Key-value store over retained MQTT topics.

    Every key is a retained topic ``{prefix}/{key}`` holding a JSON value. The
    store keeps the latest retained value per key, and a snapshot of a path is
    that cache restricted to the keys directly below it. paho runs its own
    network thread; everything it delivers is handed to the asyncio loop.
    """

    def __init__(self, settings: Settings, client: mqtt.Client | None = None) -> None:
        self._settings = settings
        self._prefix = settings.mqtt_topic_prefix.strip("/")
        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._cache: dict[str, Any] = {}
        self._subscriptions: set[Subscription] = set()
        self._client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id="soledge-dashboard")
        if settings.mqtt_username:
            self._client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)
        self._client.on_connect = self._on_connect
        self._client.on_message = self._on_message
        self._client.on_disconnect = self._on_disconnect

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        try:
            self._client.connect_async(self._settings.mqtt_host, self._settings.mqtt_port, keepalive=60)
            self._client.loop_start()
            logger.info("MQTT connecting to %s:%s", self._settings.mqtt_host, self._settings.mqtt_port)
        except Exception as exc:
            logger.exception("MQTT connect failed: %s", exc)

    def stop(self) -> None:
        for sub in list(self._subscriptions):
            sub.close()
        try:
            self._client.loop_stop()
            self._client.disconnect()
        except Exception:
            logger.exception("MQTT stop failed")

    def topic_for(self, key: str) -> str:
        return f"{self._prefix}/{key.strip('/')}"

    def key_for(self, topic: str) -> str | None:
        head = f"{self._prefix}/"
        if not topic.startswith(head):
            return None
        key = topic[len(head):].strip("/")
        return key or None

    def snapshot(self, path: str) -> Snapshot:
        path = path.strip("/")
        out: Snapshot = {}
        for key, value in self._cache.items():
            parent, leaf = split_key(key)
            if parent == path:
                out[leaf] = value
        return out

    def subscribe(self, path: str) -> Subscription:
        sub = Subscription(path, on_close=self._subscriptions.discard)
        self._subscriptions.add(sub)
        if self._connected:
            sub.push(self.snapshot(sub.path))
        return sub

    async def get(self, path: str) -> Snapshot:
        if not self._connected:
            raise ConnectivityError(f"MQTT broker {self._settings.mqtt_host}:{self._settings.mqtt_port} unreachable")
        return self.snapshot(path)

    async def set(self, key: str, value: Any) -> None:
        key = key.strip("/")
        leaf = split_key(key)[1]
        if not self._connected:
            raise WriteError(f"write to {key} failed: MQTT disconnected", [leaf])
        info = self._client.publish(self.topic_for(key), json.dumps(value), qos=1, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise WriteError(f"write to {key} failed: {mqtt.error_string(info.rc)}", [leaf])
        loop = asyncio.get_running_loop()
        timeout = self._settings.store_timeout_seconds
        try:
            await loop.run_in_executor(None, info.wait_for_publish, timeout)
        except (RuntimeError, ValueError) as exc:
            raise WriteError(f"write to {key} failed: {exc}", [leaf]) from exc
        if not info.is_published():
            raise WriteError(f"write to {key} not acknowledged within {timeout}s", [leaf])

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        self._connected = reason_code == 0
        logger.info("MQTT connected rc=%s", reason_code)
        if not self._connected:
            return
        client.subscribe(f"{self._prefix}/#", qos=1)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, disconnect_flags: Any, reason_code: Any, properties: Any = None) -> None:
        self._connected = False
        logger.warning("MQTT disconnected rc=%s", reason_code)
        error = ConnectivityError(f"MQTT disconnected rc={reason_code}")
        for sub in list(self._subscriptions):
            self._call_soon(sub.push_error, error)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        key = self.key_for(msg.topic)
        if key is None:
            return
        raw_text = msg.payload.decode("utf-8", errors="ignore").strip()
        self._call_soon(self._apply, key, raw_text)

    def _apply(self, key: str, raw_text: str) -> None:
        if not raw_text:
            # empty retained payload deletes the key
            self._cache.pop(key, None)
        else:
            try:
                self._cache[key] = json.loads(raw_text)
            except ValueError:
                logger.warning("Invalid JSON payload for key=%s", key)
                return
        path = split_key(key)[0]
        for sub in list(self._subscriptions):
            if sub.path == path:
                sub.push(self.snapshot(path))

    def _call_soon(self, callback: Any, *args: Any) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, *args)
