# brokerlink/core/logging.py
"""Structured JSON logging for the bridge process."""
from __future__ import annotations

import logging
import sys
from typing import TextIO

from pythonjsonlogger.json import JsonFormatter

LOG_FIELDS = ("asctime", "levelname", "name", "threadName", "message")


def configure_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """
    Route every record through a single JSON handler.

    Session hooks may fire on transport threads, so the thread name is part
    of each record. Calling this again replaces the handler.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        JsonFormatter(
            " ".join(f"%({field})s" for field in LOG_FIELDS),
            static_fields={"service": "brokerlink"},
        )
    )
    root.handlers = [handler]
