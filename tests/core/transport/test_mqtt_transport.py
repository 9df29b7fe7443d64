# tests/core/transport/test_mqtt_transport.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass

import aiomqtt
import pytest

from brokerlink.contracts.transport import ConnectOptions, OutboundMessage, QoS
from brokerlink.core.errors import NotConnectedError, OperationFailure, TransportIssueError
from brokerlink.core.session import DeliveryTracker, SessionListener, SessionState
from brokerlink.core.transport import AiomqttTransport


OPTIONS = ConnectOptions(host="broker.local", port=1883, client_id="cam-1")


@dataclass
class StubMessage:
    topic: str
    payload: object
    qos: int = 1
    retain: bool = False


class StubClient:
    """Stands in for aiomqtt.Client; inbound traffic is fed through `inbox`."""

    def __init__(self, fail: bool = False, **kwargs) -> None:
        self.kwargs = kwargs
        self.fail = fail
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.subscribed: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes, int, bool]] = []
        self.publish_error: Exception | None = None
        self.exited = False

    async def __aenter__(self):
        if self.fail:
            raise aiomqtt.MqttError("connection refused")
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True

    async def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))

    async def publish(self, topic, payload=None, qos=0, retain=False):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos, retain))

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.inbox.get()
            if isinstance(item, Exception):
                raise item
            yield item


class StubFactory:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.clients: list[StubClient] = []

    def __call__(self, **kwargs) -> StubClient:
        fail = len(self.clients) < self.failures
        client = StubClient(fail=fail, **kwargs)
        self.clients.append(client)
        return client


class RecordingListener:
    def __init__(self) -> None:
        self.successes = []
        self.failures = []

    def on_success(self, result):
        self.successes.append(result)

    def on_failure(self, result):
        self.failures.append(result)


class RecordingCallback:
    def __init__(self) -> None:
        self.connected_causes = []
        self.lost_causes = []
        self.messages = []
        self.deliveries = []

    def connected(self, cause):
        self.connected_causes.append(cause)

    def connection_lost(self, cause):
        self.lost_causes.append(cause)

    def message_arrived(self, message):
        self.messages.append(message)

    def delivery_complete(self, token):
        self.deliveries.append(token)


async def drain(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def factory():
    return StubFactory()


@pytest.fixture
def callback():
    return RecordingCallback()


@pytest.fixture
def transport(factory, callback):
    transport = AiomqttTransport(client_factory=factory)
    transport.set_callback(callback)
    return transport


async def connect(transport) -> RecordingListener:
    listener = RecordingListener()
    await transport.connect(OPTIONS, None, listener)
    await drain()
    return listener


@pytest.mark.asyncio
async def test_connect_success_reports_listener_then_connected(transport, factory, callback):
    listener = await connect(transport)

    assert transport.is_connected
    assert transport.client_id == "cam-1"
    assert len(listener.successes) == 1
    assert listener.successes[0].operation_id > 0
    assert callback.connected_causes == ["connect"]
    assert factory.clients[0].kwargs["hostname"] == "broker.local"
    assert factory.clients[0].kwargs["identifier"] == "cam-1"
    assert factory.clients[0].kwargs["clean_session"] is True

    await transport.close()


@pytest.mark.asyncio
async def test_connect_failure_reports_listener_only():
    transport = AiomqttTransport(client_factory=StubFactory(failures=1))
    callback = RecordingCallback()
    transport.set_callback(callback)

    listener = await connect(transport)

    assert not transport.is_connected
    assert listener.successes == []
    assert listener.failures[0].reason == "connection refused"
    assert callback.connected_causes == []


@pytest.mark.asyncio
async def test_connect_after_close_cannot_be_issued(transport):
    await transport.close()

    with pytest.raises(TransportIssueError):
        await transport.connect(OPTIONS, None, RecordingListener())


@pytest.mark.asyncio
async def test_connection_loss_is_reported(transport, factory, callback):
    await connect(transport)

    await factory.clients[0].inbox.put(aiomqtt.MqttError("keepalive timeout"))
    await drain()

    assert not transport.is_connected
    assert callback.lost_causes == ["keepalive timeout"]

    await transport.close()


@pytest.mark.asyncio
async def test_inbound_messages_are_dispatched(transport, factory, callback):
    await connect(transport)

    await factory.clients[0].inbox.put(StubMessage("cmd/led", b"on", qos=1, retain=True))
    await factory.clients[0].inbox.put(StubMessage("cmd/text", "hello", qos=0))
    await drain()

    first, second = callback.messages
    assert (first.topic, first.payload, first.qos, first.retain) == ("cmd/led", b"on", QoS.AT_LEAST_ONCE, True)
    assert second.payload == b"hello"

    await transport.close()


@pytest.mark.asyncio
async def test_subscribe_reports_topic(transport, factory):
    await connect(transport)
    listener = RecordingListener()

    op_id = await transport.subscribe("sensors/temp", QoS.AT_LEAST_ONCE, None, listener)
    await drain()

    assert factory.clients[0].subscribed == [("sensors/temp", 1)]
    assert listener.successes[0].operation_id == op_id
    assert listener.successes[0].topics == ("sensors/temp",)

    await transport.close()


@pytest.mark.asyncio
async def test_publish_completes_tracker_and_delivery(transport, factory, callback):
    await connect(transport)
    tracker = DeliveryTracker("Publish")

    token = await transport.publish("status", b"up", QoS.AT_LEAST_ONCE, False, tracker)
    assert tracker.is_done() is False
    await drain()

    assert factory.clients[0].published == [("status", b"up", 1, False)]
    assert tracker.is_done() is True
    assert callback.deliveries == [token]

    await transport.close()


@pytest.mark.asyncio
async def test_publish_failure_completes_tracker_without_delivery(transport, factory, callback, caplog):
    await connect(transport)
    factory.clients[0].publish_error = aiomqtt.MqttError("broker went away")
    tracker = DeliveryTracker("Publish")

    await transport.publish_message(OutboundMessage(topic="img", payload=b"\xff\xd8"), tracker)
    await drain()

    assert tracker.is_done() is True
    assert callback.deliveries == []
    assert "MQTT operation on img failure for token" in caplog.text
    assert isinstance(tracker.last_failure, OperationFailure)
    assert tracker.last_failure.result.reason == "broker went away"

    await transport.close()


@pytest.mark.asyncio
async def test_operations_need_a_connection(transport):
    with pytest.raises(NotConnectedError):
        await transport.publish("status", b"x", QoS.AT_LEAST_ONCE, False)
    with pytest.raises(NotConnectedError):
        await transport.subscribe("status", QoS.AT_LEAST_ONCE, None, RecordingListener())


@pytest.mark.asyncio
async def test_session_recovers_over_aiomqtt_transport():
    factory = StubFactory(failures=1)
    transport = AiomqttTransport(client_factory=factory)
    session = SessionListener(
        transport,
        OPTIONS,
        ["sensors/temp", "sensors/humidity"],
        reconnect_delay=0,
    )

    session.start()
    await drain(30)
    await session.wait_settled()
    await drain()

    # first attempt refused, second accepted
    assert session.retry_count == 1
    assert session.state is SessionState.CONNECTED
    assert [t for t, _ in factory.clients[1].subscribed] == ["sensors/temp", "sensors/humidity"]

    await factory.clients[1].inbox.put(aiomqtt.MqttError("network drop"))
    await drain(30)
    await session.wait_settled()
    await drain()

    assert session.retry_count == 0
    assert session.state is SessionState.CONNECTED
    assert factory.clients[1].exited is True
    assert [t for t, _ in factory.clients[2].subscribed] == ["sensors/temp", "sensors/humidity"]

    await session.close()
    await transport.close()
