"""Cancellation and deadline propagation for token requests.

A :class:`Context` travels with a single token request (or with every
request a :class:`~clientcreds.transport.BearerAuth` makes). It is checked
before and after the client assertion supplier runs and before and after
the HTTP round trip, and its remaining time caps the HTTP timeout.
Cancelling it turns the next check into a
:class:`~clientcreds.exceptions.RequestCancelledError`.

Example::

    ctx = Context(timeout=5.0)
    token = config.token(ctx)

    # From another thread:
    ctx.cancel()
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from clientcreds.exceptions import RequestCancelledError


class Context:
    """Deadline plus a thread-safe cancellation flag.

    Args:
        timeout: Seconds from now until the deadline. ``None`` means no
            deadline.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._deadline: Optional[float] = (
            time.monotonic() + timeout if timeout is not None else None
        )
        self._cancelled = threading.Event()
        self._reason = "context cancelled"

    @classmethod
    def background(cls) -> Context:
        """Return a context that is never cancelled and has no deadline."""
        return cls()

    @property
    def cancelled(self) -> bool:
        """Whether :meth:`cancel` has been called."""
        return self._cancelled.is_set()

    @property
    def deadline(self) -> Optional[float]:
        """The deadline as a :func:`time.monotonic` timestamp, or ``None``."""
        return self._deadline

    def cancel(self, reason: str = "context cancelled") -> None:
        """Cancel every operation using this context."""
        self._reason = reason
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (never negative), or ``None``."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def timeout(self, default: float) -> float:
        """Return *default* capped at the remaining time."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def err(self) -> Optional[RequestCancelledError]:
        """Return the error describing why this context is done, or ``None``."""
        if self._cancelled.is_set():
            return RequestCancelledError(self._reason)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return RequestCancelledError("context deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        """Raise :class:`RequestCancelledError` if cancelled or past the deadline."""
        exc = self.err()
        if exc is not None:
            raise exc
