# brokerlink/core/transport/mqtt.py
"""
MQTT transport implementation on top of aiomqtt.

aiomqtt exposes awaitable operations. This adapter turns them into the
issue-now/report-later shape of the Transport contract: every operation is
started as a background task and its outcome is reported to the listener
supplied with the request. Connection loss is detected by the message
listener task and reported through the session callback.

Usage:
    transport = AiomqttTransport()
    session = SessionListener(transport, options, topics=["dt/alerts/#"])
    session.start()
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable, Coroutine

import aiomqtt

from brokerlink.contracts.transport import (
    ActionListenerProtocol,
    ActionResult,
    ConnectOptions,
    DeliveryToken,
    OutboundMessage,
    QoS,
    ReceivedMessage,
    SessionCallback,
)
from brokerlink.core.errors import (
    NotConnectedError,
    OperationFailure,
    TransportIssueError,
)

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]


class AiomqttTransport:
    """
    Transport contract implemented with an aiomqtt client.

    A new aiomqtt.Client is created for every connect request, since a client
    whose connection dropped cannot be re-entered.
    """

    def __init__(
        self,
        client_id: str = "",
        client_factory: ClientFactory | None = None,
    ) -> None:
        """
        Args:
            client_id: Identifier reported before the first connect.
            client_factory: Callable building the client. Defaults to
                aiomqtt.Client; tests pass a stub.
        """
        self._client_id = client_id
        self._client_factory = client_factory or aiomqtt.Client

        self._client: Any | None = None
        self._connected = False
        self._closed = False
        self._callback: SessionCallback | None = None

        self._ids = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self._connect_task: asyncio.Task | None = None
        self._listener_task: asyncio.Task | None = None

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None

    def set_callback(self, callback: SessionCallback) -> None:
        self._callback = callback

    async def connect(
        self,
        options: ConnectOptions,
        context: Any,
        listener: ActionListenerProtocol,
    ) -> int:
        if self._closed:
            raise TransportIssueError("Transport is closed")
        if self._connect_task is not None and not self._connect_task.done():
            raise TransportIssueError("A connect request is already in flight")

        op_id = next(self._ids)
        if options.client_id:
            self._client_id = options.client_id

        self._connect_task = self._spawn(
            self._connect_internal(op_id, options, listener),
            "mqtt-connect",
        )
        return op_id

    async def subscribe(
        self,
        topic: str,
        qos: QoS,
        context: Any,
        listener: ActionListenerProtocol,
    ) -> int:
        client = self._require_client()
        op_id = next(self._ids)
        self._spawn(
            self._complete(op_id, (topic,), listener, client.subscribe(topic, qos=int(qos))),
            "mqtt-subscribe",
        )
        return op_id

    async def publish(
        self,
        topic: str,
        payload: bytes,
        qos: QoS,
        retain: bool,
        listener: ActionListenerProtocol | None = None,
    ) -> DeliveryToken:
        client = self._require_client()
        token = DeliveryToken(message_id=next(self._ids), topic=topic, qos=QoS(qos))
        self._spawn(
            self._complete(
                token.message_id,
                (topic,),
                listener,
                client.publish(topic, payload=payload, qos=int(qos), retain=retain),
                token,
            ),
            "mqtt-publish",
        )
        return token

    async def publish_message(
        self,
        message: OutboundMessage,
        listener: ActionListenerProtocol | None = None,
    ) -> DeliveryToken:
        return await self.publish(
            message.topic, message.payload, message.qos, message.retain, listener
        )

    async def close(self) -> None:
        """Dispose of the transport. Further connect requests raise TransportIssueError."""
        self._closed = True
        self._connected = False

        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._drop_client()
        logger.info("MQTT transport closed")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_client(self) -> Any:
        if not self.is_connected:
            raise NotConnectedError("Not connected to MQTT broker")
        return self._client

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _connect_internal(
        self,
        op_id: int,
        options: ConnectOptions,
        listener: ActionListenerProtocol,
    ) -> None:
        await self._drop_client()

        logger.info("Connecting to MQTT broker at %s:%d", options.host, options.port)

        client = self._client_factory(
            hostname=options.host,
            port=options.port,
            identifier=options.client_id or None,
            keepalive=options.keepalive,
            clean_session=options.clean_session,
        )

        try:
            await client.__aenter__()
        except Exception as exc:
            logger.error("Failed to connect to MQTT broker: %s", exc)
            listener.on_failure(ActionResult(operation_id=op_id, reason=str(exc)))
            return

        self._client = client
        self._connected = True
        logger.info(
            "Connected to MQTT broker %s:%d as %s",
            options.host,
            options.port,
            self._client_id,
        )

        self._listener_task = self._spawn(self._listen_loop(client), "mqtt-listener")
        listener.on_success(ActionResult(operation_id=op_id))
        if self._callback is not None:
            self._callback.connected("connect")

    async def _drop_client(self) -> None:
        if self._listener_task is not None:
            if self._listener_task is not asyncio.current_task():
                self._listener_task.cancel()
                try:
                    await self._listener_task
                except asyncio.CancelledError:
                    pass
            self._listener_task = None

        if self._client is not None:
            try:
                await self._client.__aexit__(None, None, None)
            except Exception as exc:
                logger.debug("Error during MQTT disconnect: %s", exc)
            finally:
                self._client = None
                self._connected = False

    async def _listen_loop(self, client: Any) -> None:
        """Dispatch inbound messages until the connection drops."""
        try:
            async for message in client.messages:
                self._dispatch_message(message)
            cause = "message stream ended"
        except aiomqtt.MqttError as exc:
            cause = str(exc)

        if self._closed or client is not self._client:
            return

        self._connected = False
        logger.warning("Connection to MQTT broker lost: %s", cause)
        if self._callback is not None:
            self._callback.connection_lost(cause)

    def _dispatch_message(self, message: Any) -> None:
        if self._callback is None:
            return

        raw = message.payload
        if isinstance(raw, (bytes, bytearray)):
            payload = bytes(raw)
        elif raw is None:
            payload = b""
        else:
            payload = str(raw).encode("utf-8")

        self._callback.message_arrived(
            ReceivedMessage(
                topic=str(message.topic),
                payload=payload,
                qos=QoS(message.qos) if message.qos in (0, 1, 2) else QoS.AT_MOST_ONCE,
                retain=bool(message.retain),
            )
        )

    async def _complete(
        self,
        op_id: int,
        topics: tuple[str, ...],
        listener: ActionListenerProtocol | None,
        operation: Coroutine[Any, Any, Any],
        token: DeliveryToken | None = None,
    ) -> None:
        try:
            await operation
        except Exception as exc:
            result = ActionResult(operation_id=op_id, topics=topics, reason=str(exc))
            logger.error("%s", OperationFailure(f"MQTT operation on {topics[0]}", result))
            if listener is not None:
                listener.on_failure(result)
            return

        if listener is not None:
            listener.on_success(ActionResult(operation_id=op_id, topics=topics))
        if token is not None and self._callback is not None:
            self._callback.delivery_complete(token)
