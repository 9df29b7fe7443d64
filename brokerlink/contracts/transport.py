# brokerlink/contracts/transport.py
"""
Transport contract for the messaging session.

The session state machine never talks to a concrete MQTT library. It drives
an object satisfying the Transport protocol below and receives completion
and connection events through the listener/callback protocols.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class QoS(int, Enum):
    """Quality of Service levels, passed through to the transport untouched."""

    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
    EXACTLY_ONCE = 2


@dataclass(frozen=True)
class ActionResult:
    """
    Outcome of one asynchronous broker operation (connect, subscribe, publish).

    Attributes:
        operation_id: Transport-assigned id. 0 means the operation is not tracked.
        topics: Topics the operation concerned, in request order.
        reason: Failure description supplied by the transport, if any.
    """

    operation_id: int = 0
    topics: tuple[str, ...] | None = None
    reason: str | None = None


@dataclass(frozen=True)
class DeliveryToken:
    """
    Handle for one in-flight publish.

    Attributes:
        message_id: Transport-assigned id used to correlate completion events.
        topic: Destination topic.
        qos: QoS level the message was sent with.
    """

    message_id: int
    topic: str
    qos: QoS = QoS.AT_LEAST_ONCE


@dataclass(frozen=True)
class OutboundMessage:
    """A topic + payload bundle for Transport.publish_message."""

    topic: str
    payload: bytes
    qos: QoS = QoS.AT_LEAST_ONCE
    retain: bool = False


@dataclass(frozen=True)
class ReceivedMessage:
    """A message delivered by the broker on one of the subscribed topics."""

    topic: str
    payload: bytes
    qos: QoS = QoS.AT_MOST_ONCE
    retain: bool = False


@dataclass(frozen=True)
class ConnectOptions:
    """
    Options for Transport.connect. Opaque to the session state machine.

    Attributes:
        host: Broker hostname.
        port: Broker port.
        client_id: Client identifier presented to the broker.
        keepalive: Keepalive interval in seconds.
        clean_session: Whether to start with a clean session. With a clean
            session the client re-subscribes itself after every reconnect.
    """

    host: str = "localhost"
    port: int = 1883
    client_id: str = ""
    keepalive: int = 60
    clean_session: bool = True


@runtime_checkable
class ActionListenerProtocol(Protocol):
    """Receives the terminal result of an asynchronous operation."""

    def on_success(self, result: ActionResult) -> None:
        ...

    def on_failure(self, result: ActionResult) -> None:
        ...


@runtime_checkable
class SessionCallback(Protocol):
    """
    Connection-level events raised by the transport.

    The transport calls these from its own execution context.
    """

    def connected(self, cause: str) -> None:
        ...

    def connection_lost(self, cause: str | None) -> None:
        ...

    def message_arrived(self, message: ReceivedMessage) -> None:
        ...

    def delivery_complete(self, token: DeliveryToken | None) -> None:
        ...


@runtime_checkable
class Transport(Protocol):
    """
    Protocol for the client connection the session runs on.

    connect/subscribe only *issue* an operation and return its id. The outcome
    is reported later through the supplied listener. connect may raise
    synchronously when the request cannot be issued at all.
    """

    @property
    def client_id(self) -> str:
        ...

    @property
    def is_connected(self) -> bool:
        ...

    def set_callback(self, callback: SessionCallback) -> None:
        ...

    async def connect(
        self,
        options: ConnectOptions,
        context: Any,
        listener: ActionListenerProtocol,
    ) -> int:
        ...

    async def subscribe(
        self,
        topic: str,
        qos: QoS,
        context: Any,
        listener: ActionListenerProtocol,
    ) -> int:
        ...

    async def publish(
        self,
        topic: str,
        payload: bytes,
        qos: QoS,
        retain: bool,
        listener: ActionListenerProtocol | None = None,
    ) -> DeliveryToken:
        ...

    async def publish_message(
        self,
        message: OutboundMessage,
        listener: ActionListenerProtocol | None = None,
    ) -> DeliveryToken:
        ...

    async def close(self) -> None:
        ...
