# tests/conftest.py
from __future__ import annotations

import itertools

import pytest

from brokerlink.contracts.transport import (
    ActionResult,
    ConnectOptions,
    DeliveryToken,
    QoS,
)
from brokerlink.core.session import SessionListener


class FakeTransport:
    """Records every request; outcomes are driven by the test."""

    def __init__(self) -> None:
        self.client_id = "fake-client"
        self.callback = None
        self.connect_calls: list[ConnectOptions] = []
        self.subscribe_calls: list[tuple[str, QoS]] = []
        self.published: list[tuple[str, bytes, QoS, bool]] = []
        self.messages = []
        self.listeners = []

        self.connect_error: Exception | None = None
        self.fail_connects = False
        self.subscribe_errors: set[str] = set()
        self.closed = False

        self._ids = itertools.count(1)

    @property
    def is_connected(self) -> bool:
        return not self.closed

    def set_callback(self, callback) -> None:
        self.callback = callback

    async def connect(self, options, context, listener) -> int:
        if self.connect_error is not None:
            raise self.connect_error
        self.connect_calls.append(options)
        op_id = next(self._ids)
        if self.fail_connects:
            listener.on_failure(ActionResult(operation_id=op_id, reason="refused"))
        return op_id

    async def subscribe(self, topic, qos, context, listener) -> int:
        if topic in self.subscribe_errors:
            raise RuntimeError(f"cannot subscribe {topic}")
        self.subscribe_calls.append((topic, qos))
        op_id = next(self._ids)
        listener.on_success(ActionResult(operation_id=op_id, topics=(topic,)))
        return op_id

    async def publish(self, topic, payload, qos, retain, listener=None) -> DeliveryToken:
        self.published.append((topic, payload, qos, retain))
        self.listeners.append(listener)
        return DeliveryToken(message_id=next(self._ids), topic=topic, qos=qos)

    async def publish_message(self, message, listener=None) -> DeliveryToken:
        self.messages.append(message)
        self.listeners.append(listener)
        return DeliveryToken(message_id=next(self._ids), topic=message.topic, qos=message.qos)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_session(transport):
    def factory(topics=("sensors/temp", "sensors/humidity"), **kwargs) -> SessionListener:
        kwargs.setdefault("reconnect_delay", 0)
        return SessionListener(
            transport,
            ConnectOptions(host="broker.local", client_id="test-client"),
            topics,
            **kwargs,
        )

    return factory
