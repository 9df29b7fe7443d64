# brokerlink/core/session/__init__.py
"""
Session management for a broker connection.

This package provides:
- ActionListener / DeliveryTracker for operation outcomes
- SessionListener, the reconnect/resubscribe state machine
- publish_text / publish_image helpers
- SessionSupervisor, which turns fatal session errors into a shutdown

Example usage:

    from brokerlink.core.session import SessionListener, SessionSupervisor

    session = SessionListener(transport, options, topics=["sensors/temp"])
    exit_code = await SessionSupervisor(session).run(stop_event)
"""

from brokerlink.core.session.gateway import publish_image, publish_text
from brokerlink.core.session.listeners import ActionListener, DeliveryTracker
from brokerlink.core.session.machine import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RECONNECT_DELAY,
    SessionListener,
    SessionState,
)
from brokerlink.core.session.supervisor import EXIT_FATAL, EXIT_OK, SessionSupervisor

__all__ = [
    # Listeners
    "ActionListener",
    "DeliveryTracker",
    # State machine
    "SessionListener",
    "SessionState",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RECONNECT_DELAY",
    # Publishing
    "publish_text",
    "publish_image",
    # Supervision
    "SessionSupervisor",
    "EXIT_OK",
    "EXIT_FATAL",
]
