# brokerlink/core/session/machine.py
"""
Reconnection state machine for a broker session.

SessionListener is registered with the transport both as the connection
callback and as the listener of every connect request it issues. It restores
the session after a connection loss: wait, reconnect, and re-subscribe the
configured topics once the broker accepts the connection.

States:
    DISCONNECTED -> CONNECTING    start()
    CONNECTED    -> CONNECTING    connection_lost()
    CONNECTING   -> CONNECTING    on_failure() while retries remain
    CONNECTING   -> CONNECTED     connected()
    DISCONNECTED -> CONNECTED     connected() from a transport that connects itself

connected() is the only hook that establishes the session and subscribes.
on_success() for the connect request is logged and nothing else, so a
transport that reports both never subscribes twice.

Fatal conditions (connect request cannot be issued, retries exhausted) are
not handled here. They resolve the ``fatal`` future, which the supervisor
awaits to shut the process down.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Awaitable, Callable, Iterable

from brokerlink.contracts.transport import (
    ActionResult,
    ConnectOptions,
    DeliveryToken,
    QoS,
    ReceivedMessage,
    Transport,
)
from brokerlink.core.errors import (
    ReconnectExhaustedError,
    SessionFatalError,
    TransportIssueError,
)
from brokerlink.core.session.listeners import ActionListener

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 2.5
DEFAULT_MAX_RETRIES = 5

MessageCallback = Callable[[ReceivedMessage], None]


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SessionListener:
    """
    Connection callback and connect-request listener for one client session.

    Hooks may be called from any thread. State and the retry counter are
    only changed under ``_state_lock``. Reconnect delays and subscribe calls
    run as tasks on the session's event loop and are executed one at a time,
    in submission order, so a reconnect never overlaps a subscription pass.

    Example:
        session = SessionListener(
            transport,
            ConnectOptions(host="localhost", client_id="cam-1"),
            topics=["sensors/temp", "sensors/humidity"],
        )
        session.start()
        error = await session.fatal
    """

    def __init__(
        self,
        transport: Transport,
        options: ConnectOptions,
        topics: Iterable[str],
        *,
        qos: QoS = QoS.AT_LEAST_ONCE,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        on_message: MessageCallback | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Initialize the session listener and register it with the transport.

        Args:
            transport: Client connection shared with the publish helpers.
            options: Options passed to every connect request.
            topics: Topics to subscribe after each successful connection,
                in subscription order.
            qos: QoS level used for every subscription.
            reconnect_delay: Seconds to wait before each reconnect attempt.
            max_retries: Failed attempts tolerated after a connection loss.
            on_message: Optional handler for inbound messages.
            loop: Event loop to run session work on. Defaults to the loop
                running when the listener is constructed, so a listener built
                outside a running loop needs this argument before its hooks
                can be called from transport threads.
        """
        self._transport = transport
        self._options = options
        self._topics = tuple(topics)
        self._qos = qos
        self._reconnect_delay = reconnect_delay
        self._max_retries = max_retries
        self._on_message = on_message

        self._sub_listener = ActionListener("Subscription")

        self._state_lock = threading.Lock()
        self._state = SessionState.DISCONNECTED
        self._retry_count = 0
        self._closed = False
        self._fatal_error: SessionFatalError | None = None

        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop
        self._fatal: asyncio.Future | None = loop.create_future() if loop else None
        self._worker_lock: asyncio.Lock | None = None
        self._jobs: set[asyncio.Task] = set()

        transport.set_callback(self)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def topics(self) -> tuple[str, ...]:
        return self._topics

    @property
    def qos(self) -> QoS:
        return self._qos

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def options(self) -> ConnectOptions:
        return self._options

    @property
    def fatal_error(self) -> SessionFatalError | None:
        """The fatal error that stopped the session, if any."""
        return self._fatal_error

    @property
    def fatal(self) -> asyncio.Future:
        """Future resolved with the first SessionFatalError."""
        self._bind_loop()
        assert self._fatal is not None
        return self._fatal

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Issue the initial connect request without any backoff."""
        self._bind_loop()
        with self._state_lock:
            if self._state is not SessionState.DISCONNECTED or self._stopped:
                logger.warning("Session already started")
                return
            self._state = SessionState.CONNECTING

        logger.info(
            "Connecting to %s:%d as %s",
            self._options.host,
            self._options.port,
            self._options.client_id,
        )
        self._submit(lambda: self._reconnect(0), "session-connect")

    async def close(self) -> None:
        """Stop reacting to transport events and cancel pending session work."""
        with self._state_lock:
            self._closed = True
            self._state = SessionState.DISCONNECTED

        jobs = [t for t in self._jobs if not t.done()]
        for task in jobs:
            task.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)

    async def wait_settled(self) -> None:
        """Wait until no reconnect or subscription work is pending."""
        while True:
            await asyncio.sleep(0)
            pending = [t for t in self._jobs if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Transport hooks
    # ------------------------------------------------------------------

    def connection_lost(self, cause: str | None) -> None:
        """Connection to the broker dropped: reset the retry budget and reconnect."""
        if self._stopped:
            return
        self._bind_loop()

        logger.warning("Connection lost")
        if cause:
            logger.warning("\tcause: %s", cause)

        with self._state_lock:
            self._retry_count = 0
            if self._state is not SessionState.CONNECTED:
                # A reconnect cycle is already running.
                return
            self._state = SessionState.CONNECTING

        logger.info("Reconnecting...")
        self._submit(lambda: self._reconnect(self._reconnect_delay), "session-reconnect")

    def on_failure(self, result: ActionResult) -> None:
        """A connect attempt failed."""
        if self._stopped:
            return
        self._bind_loop()

        logger.warning(
            "Connection attempt failed%s",
            f": {result.reason}" if result.reason else "",
        )

        with self._state_lock:
            if self._state is not SessionState.CONNECTING:
                logger.debug(
                    "Ignoring connect failure in state %s", self._state.value
                )
                return
            self._retry_count += 1
            attempts = self._retry_count
            exhausted = attempts > self._max_retries

        if exhausted:
            self._report_fatal(ReconnectExhaustedError(attempts, self._max_retries))
            return

        self._submit(lambda: self._reconnect(self._reconnect_delay), "session-reconnect")

    def on_success(self, result: ActionResult) -> None:
        # connected() is authoritative; see module docstring.
        logger.debug("Connect request acknowledged [%d]", result.operation_id)

    def connected(self, cause: str) -> None:
        """(Re)connection succeeded: subscribe every topic in order."""
        if self._stopped:
            return
        self._bind_loop()

        with self._state_lock:
            if self._state is SessionState.CONNECTED:
                logger.debug("Duplicate connected event ignored")
                return
            self._state = SessionState.CONNECTED

        logger.info("Connection success%s", f" ({cause})" if cause else "")
        self._submit(self._subscribe_all, "session-subscribe")

    def delivery_complete(self, token: DeliveryToken | None) -> None:
        if token is None:
            return
        logger.debug("Delivery complete for token: %d", token.message_id)

    def message_arrived(self, message: ReceivedMessage) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Message handler failed for topic %s", message.topic)

    # ------------------------------------------------------------------
    # Session work
    # ------------------------------------------------------------------

    async def _reconnect(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)

        with self._state_lock:
            if self._state is not SessionState.CONNECTING or self._stopped:
                return

        try:
            await self._transport.connect(self._options, None, self)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Error: %s", exc)
            if isinstance(exc, TransportIssueError):
                error = exc
            else:
                error = TransportIssueError(f"Connect request could not be issued: {exc}")
                error.__cause__ = exc
            self._report_fatal(error)

    async def _subscribe_all(self) -> None:
        for topic in self._topics:
            if self._state is not SessionState.CONNECTED:
                logger.info("Connection dropped while subscribing, deferring '%s'", topic)
                return

            logger.info(
                "Subscribing to topic '%s' for client %s using QoS%d",
                topic,
                self._transport.client_id,
                self._qos.value,
            )
            try:
                await self._transport.subscribe(topic, self._qos, None, self._sub_listener)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._sub_listener.on_failure(ActionResult(topics=(topic,), reason=str(exc)))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @property
    def _stopped(self) -> bool:
        return self._closed or self._fatal_error is not None

    def _bind_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise RuntimeError(
                    "SessionListener has no event loop; construct it inside a "
                    "running loop or pass loop="
                ) from exc
        if self._fatal is None:
            self._fatal = self._loop.create_future()
        return self._loop

    def _submit(self, job: Callable[[], Awaitable[None]], name: str) -> None:
        loop = self._bind_loop()
        loop.call_soon_threadsafe(self._spawn, job, name)

    def _spawn(self, job: Callable[[], Awaitable[None]], name: str) -> None:
        if self._stopped:
            return
        assert self._loop is not None
        task = self._loop.create_task(self._run_serial(job), name=name)
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)

    async def _run_serial(self, job: Callable[[], Awaitable[None]]) -> None:
        if self._worker_lock is None:
            self._worker_lock = asyncio.Lock()
        async with self._worker_lock:
            if self._stopped:
                return
            await job()

    def _report_fatal(self, error: SessionFatalError) -> None:
        with self._state_lock:
            if self._fatal_error is not None:
                return
            self._fatal_error = error
            self._state = SessionState.DISCONNECTED

        logger.critical("Session stopped: %s", error)
        loop = self._bind_loop()
        loop.call_soon_threadsafe(self._resolve_fatal, error)

    def _resolve_fatal(self, error: SessionFatalError) -> None:
        if self._fatal is not None and not self._fatal.done():
            self._fatal.set_result(error)
