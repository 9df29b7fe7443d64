from __future__ import annotations

import asyncio
import logging
import signal
import sys

from brokerlink.contracts.transport import ReceivedMessage
from brokerlink.core.config import Settings
from brokerlink.core.logging import configure_logging
from brokerlink.core.session import SessionListener, SessionSupervisor
from brokerlink.core.transport import AiomqttTransport

logger = logging.getLogger(__name__)


def _log_message(message: ReceivedMessage) -> None:
    logger.info("Message arrived on %s (%d bytes)", message.topic, len(message.payload))


def build_session(settings: Settings, transport: AiomqttTransport | None = None) -> SessionListener:
    options = settings.connect_options()
    transport = transport or AiomqttTransport(client_id=options.client_id)
    return SessionListener(
        transport,
        options,
        settings.topics,
        qos=settings.qos,
        reconnect_delay=settings.reconnect_delay,
        max_retries=settings.max_retries,
        on_message=_log_message,
    )


async def run(settings: Settings) -> int:
    session = build_session(settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            logger.warning("Signal handlers not supported on this platform")

    return await SessionSupervisor(session).run(stop)


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    logger.info(
        "Starting session for %s on %s:%d",
        settings.mqtt_client_id,
        settings.mqtt_host,
        settings.mqtt_port,
    )

    try:
        code = asyncio.run(run(settings))
    except Exception:
        logger.exception("Session runtime failed")
        code = 1
    finally:
        logging.shutdown()

    sys.exit(code)


if __name__ == "__main__":
    main()
