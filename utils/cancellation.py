"""
Explicit cancellation context shared by long-running deployment calls
"""

import logging
import threading
from typing import Callable, List, Optional

from utils.async_base import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with optional parent and callbacks"""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self._reason: Optional[str] = None
        self.parent = parent
        if parent is not None:
            parent.add_callback(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled"):
        """Request cancellation and fire registered callbacks once"""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]):
        """Register a callback; runs immediately when already cancelled"""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def detach(self):
        """Stop following the parent token"""
        if self.parent is not None:
            self.parent.remove_callback(self.cancel)
            self.parent = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or timeout; returns the cancelled state"""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, stage: str = None):
        if self._event.is_set():
            where = f" during {stage}" if stage else ""
            raise OperationCancelledError(f"Operation cancelled{where}: {self._reason}")

    def child(self) -> "CancellationToken":
        """Create a token cancelled together with this one"""
        return CancellationToken(parent=self)


def check_cancelled(token: Optional[CancellationToken], stage: str = None):
    """Raise OperationCancelledError if a token is given and cancelled"""
    if token is not None:
        token.raise_if_cancelled(stage)
