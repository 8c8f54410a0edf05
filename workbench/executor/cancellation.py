"""Cooperative cancellation for runs.

A run holds one CancellationSignal. The executor checks it before starting
each unit; the in-flight completion call is aborted through a callback that
cancels the asyncio task consuming the provider stream. cancel() is safe to
call from any thread.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancellationSignal:
    """Thread-safe, one-shot cancellation flag with callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled") -> bool:
        """Set the signal. Returns False if it was already set."""
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        logger.info(f"Cancellation requested: {reason}")
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run *callback* on cancel (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove(callback)
        callback()
        return lambda: None

    def _remove(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)
