from brokerlink.contracts.transport import (
    ActionListenerProtocol,
    ActionResult,
    ConnectOptions,
    DeliveryToken,
    OutboundMessage,
    QoS,
    ReceivedMessage,
    SessionCallback,
    Transport,
)

__all__ = [
    "ActionListenerProtocol",
    "ActionResult",
    "ConnectOptions",
    "DeliveryToken",
    "OutboundMessage",
    "QoS",
    "ReceivedMessage",
    "SessionCallback",
    "Transport",
]
