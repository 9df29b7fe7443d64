# brokerlink/core/session/listeners.py
"""
Action listeners for asynchronous broker operations.

ActionListener only reports outcomes to the log. DeliveryTracker adds a
completion flag callers can poll to learn that a publish reached a terminal
state. The outcome itself is only in the log.
"""
from __future__ import annotations

import logging

from brokerlink.contracts.transport import ActionResult
from brokerlink.core.errors import OperationFailure

logger = logging.getLogger(__name__)


class ActionListener:
    """Logs the success or failure of requested actions."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._last_failure: OperationFailure | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def last_failure(self) -> OperationFailure | None:
        """The most recent failure reported to this listener."""
        return self._last_failure

    def on_failure(self, result: ActionResult) -> None:
        failure = OperationFailure(self._name, result)
        self._last_failure = failure
        logger.warning("%s", failure)

    def on_success(self, result: ActionResult) -> None:
        if result.operation_id:
            logger.info("%s success for token [%d]", self._name, result.operation_id)
        else:
            logger.info("%s success", self._name)

        if result.topics:
            logger.info("\ttoken topic: '%s', ...", result.topics[0])


class DeliveryTracker(ActionListener):
    """ActionListener that remembers whether its operation has finished."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._done = False

    def on_failure(self, result: ActionResult) -> None:
        super().on_failure(result)
        self._done = True

    def on_success(self, result: ActionResult) -> None:
        super().on_success(result)
        self._done = True

    def is_done(self) -> bool:
        return self._done
