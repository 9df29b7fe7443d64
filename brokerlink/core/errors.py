from __future__ import annotations

from brokerlink.contracts.transport import ActionResult


class BrokerLinkError(Exception):
    pass


class SessionFatalError(BrokerLinkError):
    """The session cannot continue; the supervisor must shut the process down."""


class TransportIssueError(SessionFatalError):
    """The connect request could not be issued (e.g. transport already closed)."""


class ReconnectExhaustedError(SessionFatalError):
    def __init__(self, attempts: int, max_retries: int) -> None:
        super().__init__(
            f"Reconnect failed {attempts} times (max retries {max_retries})"
        )
        self.attempts = attempts
        self.max_retries = max_retries


class OperationFailure(BrokerLinkError):
    """A connect/subscribe/publish operation completed with failure status."""

    def __init__(self, name: str, result: ActionResult) -> None:
        token = f" for token [{result.operation_id}]" if result.operation_id else ""
        detail = f": {result.reason}" if result.reason else ""
        super().__init__(f"{name} failure{token}{detail}")
        self.name = name
        self.result = result


class EncodingError(BrokerLinkError):
    pass


class NotConnectedError(BrokerLinkError):
    pass
