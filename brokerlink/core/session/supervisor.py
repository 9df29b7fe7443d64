from __future__ import annotations

import asyncio
import logging

from brokerlink.contracts.transport import Transport
from brokerlink.core.session.machine import SessionListener

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1


class SessionSupervisor:
    """
    Runs a session until it fails fatally or a stop is requested.

    The session never exits the process itself. Its fatal errors end up here,
    where the transport is closed before an exit status is handed back.
    """

    def __init__(self, session: SessionListener, transport: Transport | None = None) -> None:
        self._session = session
        self._transport = transport or session.transport

    async def run(self, stop: asyncio.Event | None = None) -> int:
        """
        Start the session and wait for a fatal error or the stop event.

        Returns:
            EXIT_FATAL after a fatal session error, EXIT_OK after a stop.
        """
        fatal = self._session.fatal
        self._session.start()

        waiters: set[asyncio.Future] = {fatal}
        stop_task: asyncio.Task | None = None
        if stop is not None:
            stop_task = asyncio.create_task(stop.wait(), name="session-stop")
            waiters.add(stop_task)

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if stop_task is not None and not stop_task.done():
                stop_task.cancel()

        if fatal.done():
            logger.critical("Fatal session error, shutting down: %s", fatal.result())
            await self._shutdown()
            return EXIT_FATAL

        logger.info("Stop requested, shutting down")
        await self._shutdown()
        return EXIT_OK

    async def _shutdown(self) -> None:
        await self._session.close()
        try:
            await self._transport.close()
        except Exception as exc:
            logger.warning("Error closing transport: %s", exc)
