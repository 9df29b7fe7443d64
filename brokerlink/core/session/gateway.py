# brokerlink/core/session/gateway.py
"""
Publish helpers.

These hand a payload to the session's transport and return the delivery
token. Pass a DeliveryTracker to learn when the broker has finished with the
message:

    tracker = DeliveryTracker("Frame")
    token = await publish_image(session, "camera/frames", frame, tracker=tracker)
    ...
    if tracker.is_done():
        ...
"""
from __future__ import annotations

import logging
from typing import Any

from brokerlink.contracts.transport import DeliveryToken, OutboundMessage
from brokerlink.core.errors import NotConnectedError
from brokerlink.core.imaging import DEFAULT_IMAGE_FORMAT, encode_frame
from brokerlink.core.session.listeners import DeliveryTracker
from brokerlink.core.session.machine import SessionListener

logger = logging.getLogger(__name__)


def _check_topic(topic: str) -> None:
    if not topic:
        raise ValueError("Topic must not be empty")


def _check_connected(session: SessionListener, topic: str) -> None:
    if not session.is_connected:
        raise NotConnectedError(
            f"Cannot publish to '{topic}': session is {session.state.value}"
        )


async def publish_text(
    session: SessionListener,
    topic: str,
    payload: str | bytes,
    *,
    tracker: DeliveryTracker | None = None,
) -> DeliveryToken:
    """
    Publish a text payload with the session QoS and retain=False.

    Raises:
        ValueError: If topic is empty.
        NotConnectedError: If the session is not connected.
    """
    _check_topic(topic)
    _check_connected(session, topic)

    data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    token = await session.transport.publish(topic, data, session.qos, False, tracker)

    logger.debug("Delivering: %s [%d] (%d bytes)", topic, token.message_id, len(data))
    return token


async def publish_image(
    session: SessionListener,
    topic: str,
    frame: Any,
    *,
    tracker: DeliveryTracker | None = None,
    fmt: str = DEFAULT_IMAGE_FORMAT,
) -> DeliveryToken:
    """
    Encode a frame and publish the image bytes.

    The frame is encoded before the connection is checked, so a bad frame
    raises EncodingError whatever the session state and never reaches the
    transport.

    Raises:
        ValueError: If topic is empty.
        EncodingError: If the frame cannot be encoded.
        NotConnectedError: If the session is not connected.
    """
    _check_topic(topic)
    data = encode_frame(frame, fmt)
    _check_connected(session, topic)

    message = OutboundMessage(topic=topic, payload=data, qos=session.qos, retain=False)
    token = await session.transport.publish_message(message, tracker)

    logger.debug("Delivering: %s [%d] (%s, %d bytes)", topic, token.message_id, fmt, len(data))
    return token
