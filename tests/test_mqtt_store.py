from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from soledge.errors import ConnectivityError, WriteError
from soledge.mqtt_store import MqttStore


def _message(topic: str, payload: bytes) -> MagicMock:
    msg = MagicMock()
    msg.topic = topic
    msg.payload = payload
    return msg


@pytest.fixture()
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def mqtt_store(settings, client) -> MqttStore:
    return MqttStore(replace(settings, mqtt_topic_prefix="home", store_timeout_seconds=0.5), client=client)


def test_topic_mapping(mqtt_store):
    assert mqtt_store.topic_for("Fan") == "home/Fan"
    assert mqtt_store.topic_for("sensorData/temperature") == "home/sensorData/temperature"
    assert mqtt_store.key_for("home/Fan") == "Fan"
    assert mqtt_store.key_for("other/Fan") is None
    assert mqtt_store.key_for("home/") is None


def test_connect_subscribes_to_prefix(mqtt_store, client):
    mqtt_store._on_connect(client, None, {}, 0)
    assert mqtt_store.connected
    client.subscribe.assert_called_once_with("home/#", qos=1)


@pytest.mark.asyncio
async def test_retained_messages_build_snapshots(mqtt_store, client):
    mqtt_store.start(asyncio.get_running_loop())
    client.connect_async.assert_called_once()
    mqtt_store._on_connect(client, None, {}, 0)

    async with mqtt_store.subscribe("") as sub:
        assert await sub.next() == {}
        mqtt_store._on_message(client, None, _message("home/Fan", b"1"))
        assert await sub.next() == {"Fan": 1}
        mqtt_store._on_message(client, None, _message("home/Light", b"not json"))
        mqtt_store._on_message(client, None, _message("home/sensorData/temperature", b"24.5"))
        mqtt_store._on_message(client, None, _message("home/Light", b"0"))
        assert await sub.next() == {"Fan": 1, "Light": 0}

        mqtt_store._on_message(client, None, _message("home/Fan", b""))
        assert await sub.next() == {"Light": 0}

    assert mqtt_store.snapshot("sensorData") == {"temperature": 24.5}


@pytest.mark.asyncio
async def test_disconnect_is_delivered_in_stream(mqtt_store, client):
    mqtt_store.start(asyncio.get_running_loop())
    mqtt_store._on_connect(client, None, {}, 0)
    async with mqtt_store.subscribe("") as sub:
        await sub.next()
        mqtt_store._on_disconnect(client, None, {}, 7)
        with pytest.raises(ConnectivityError):
            await sub.next()
    with pytest.raises(ConnectivityError):
        await mqtt_store.get("")


@pytest.mark.asyncio
async def test_set_publishes_retained_json(mqtt_store, client):
    info = MagicMock()
    info.rc = mqtt.MQTT_ERR_SUCCESS
    info.is_published.return_value = True
    client.publish.return_value = info
    mqtt_store._on_connect(client, None, {}, 0)

    await mqtt_store.set("Fan", 0)

    client.publish.assert_called_once_with("home/Fan", "0", qos=1, retain=True)
    info.wait_for_publish.assert_called_once_with(0.5)


@pytest.mark.asyncio
async def test_set_failures(mqtt_store, client):
    with pytest.raises(WriteError, match="disconnected"):
        await mqtt_store.set("Fan", 1)

    mqtt_store._on_connect(client, None, {}, 0)
    info = MagicMock()
    info.rc = mqtt.MQTT_ERR_SUCCESS
    info.is_published.return_value = False
    client.publish.return_value = info
    with pytest.raises(WriteError, match="not acknowledged") as excinfo:
        await mqtt_store.set("Fan", 1)
    assert excinfo.value.device_ids == ("Fan",)

    info.rc = mqtt.MQTT_ERR_NO_CONN
    with pytest.raises(WriteError):
        await mqtt_store.set("Fan", 1)


def test_stop_releases_subscriptions(mqtt_store, client):
    sub = mqtt_store.subscribe("")
    mqtt_store.stop()
    assert sub.closed
    client.loop_stop.assert_called_once()
    client.disconnect.assert_called_once()
