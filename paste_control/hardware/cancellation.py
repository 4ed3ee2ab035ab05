"""Cooperative cancellation.

A ``CancellationToken`` is handed to every long-running engine call and
polled at step boundaries only, so an in-flight command batch always
completes before the cancel is honoured.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto

logger = logging.getLogger(__name__)


class Outcome(Enum):
    """How a procedure or run terminated (errors propagate instead)."""

    COMPLETED = auto()
    CANCELLED = auto()


class CancellationToken:
    """Thread-safe cancel flag backed by ``threading.Event``."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation -- honoured at the next step boundary."""
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        self._event.clear()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or *timeout* elapses; return the flag."""
        return self._event.wait(timeout)
