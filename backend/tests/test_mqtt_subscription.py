"""Tests for the MQTT subscription loop."""

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import aiomqtt
import pytest

from gridcell.collectors.mqtt import MqttSubscription
from gridcell.config import Settings


class FakeClient:
    """Broker connection delivering a fixed list of payloads, then idling."""

    def __init__(self, payloads=(), error: Exception | None = None):
        self.payloads = list(payloads)
        self.error = error
        self.subscriptions = []

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def subscribe(self, topic, qos=0):
        self.subscriptions.append((topic, qos))

    @property
    def messages(self):
        return self._messages()

    async def _messages(self):
        for payload in self.payloads:
            yield SimpleNamespace(payload=payload)
        await asyncio.Event().wait()


@pytest.fixture
def settings():
    return Settings(_env_file=None, mqtt_reconnect_seconds=0.01)


class TestMqttSubscription:
    """Tests for subscribe, dispatch and reconnect."""

    async def test_dispatches_payloads_to_handler(self, settings):
        received = []
        done = asyncio.Event()

        async def handler(payload):
            received.append(payload)
            if len(received) == 2:
                done.set()

        client = FakeClient([b"one", b"two"])
        subscription = MqttSubscription("uplinks", "ttnmapper/inserted_data", handler, settings)

        with patch.object(subscription, "_client", return_value=client):
            await subscription.start()
            await asyncio.wait_for(done.wait(), timeout=1)
            await subscription.stop()

        assert received == [b"one", b"two"]
        assert client.subscriptions == [("ttnmapper/inserted_data", 1)]
        assert not subscription.running

    async def test_reconnects_after_broker_error(self, settings):
        done = asyncio.Event()

        async def handler(payload):
            done.set()

        clients = [FakeClient(error=aiomqtt.MqttError("connection refused")), FakeClient([b"x"])]
        subscription = MqttSubscription("uplinks", "topic", handler, settings)

        with patch.object(subscription, "_client", side_effect=clients):
            await subscription.start()
            await asyncio.wait_for(done.wait(), timeout=1)
            await subscription.stop()

        assert clients[1].subscriptions == [("topic", 1)]

    async def test_handler_error_does_not_stop_subscription(self, settings):
        calls = []
        done = asyncio.Event()

        async def handler(payload):
            calls.append(payload)
            if payload == b"bad":
                raise RuntimeError("handler failed")
            done.set()

        clients = [FakeClient([b"bad"]), FakeClient([b"good"])]
        subscription = MqttSubscription("uplinks", "topic", handler, settings)

        with patch.object(subscription, "_client", side_effect=clients):
            await subscription.start()
            await asyncio.wait_for(done.wait(), timeout=1)
            await subscription.stop()

        assert calls == [b"bad", b"good"]

    async def test_start_is_idempotent(self, settings):
        async def handler(payload):
            pass

        subscription = MqttSubscription("uplinks", "topic", handler, settings)

        with patch.object(subscription, "_client", return_value=FakeClient()):
            await subscription.start()
            task = subscription._task
            await subscription.start()
            assert subscription._task is task
            await subscription.stop()
