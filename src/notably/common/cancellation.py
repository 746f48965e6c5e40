"""Cancellation signals for store operations.

A CancellationToken combines an explicit cancel flag with an optional
deadline. Store operations call ``raise_if_cancelled`` before each backing
store call, so a cancelled operation has performed either zero or one
complete backing-store write.

Usage:
    token = CancellationToken.with_timeout(2.5)
    store.get_snapshot_at_time("ns", at, cancel=token)

    # From another thread
    token.cancel("client disconnected")

The store also publishes the token of the running operation through a
context variable, so an adapter can bound blocking waits (such as a pool
acquire) by the caller's deadline without a token in its signature.
"""

import contextvars
import threading
import time
from contextlib import contextmanager
from typing import Optional

from notably.common.errors import CanceledError


class CancellationToken:
    """Thread-safe cancel flag with an optional monotonic deadline."""

    def __init__(self, deadline: Optional[float] = None):
        """
        Args:
            deadline: Absolute ``time.monotonic()`` value after which the
                token counts as cancelled (None = no deadline)
        """
        self._event = threading.Event()
        self._deadline = deadline
        self._reason: Optional[str] = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        """Create a token that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, operation: Optional[str] = None) -> None:
        """Raise CanceledError if cancelled or past the deadline."""
        if self._event.is_set():
            raise CanceledError(self._reason or "cancelled by caller", operation)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise CanceledError("deadline exceeded", operation)


def check_cancelled(cancel: Optional[CancellationToken], operation: str) -> None:
    """Raise CanceledError if ``cancel`` is set; no-op for None."""
    if cancel is not None:
        cancel.raise_if_cancelled(operation)


_current_token: contextvars.ContextVar[Optional[CancellationToken]] = contextvars.ContextVar(
    "cancellation_token", default=None
)


def current_cancellation() -> Optional[CancellationToken]:
    """Token of the store operation running in this context, if any."""
    return _current_token.get()


@contextmanager
def cancellation_scope(cancel: Optional[CancellationToken]):
    """Make ``cancel`` visible to adapters for the duration of the block."""
    reset_token = _current_token.set(cancel)
    try:
        yield cancel
    finally:
        _current_token.reset(reset_token)


def bounded_timeout(timeout: float, cancel: Optional[CancellationToken]) -> float:
    """Shorten ``timeout`` to the time left on ``cancel``'s deadline."""
    if cancel is None:
        return timeout
    remaining = cancel.remaining()
    if remaining is None:
        return timeout
    return min(timeout, remaining)
