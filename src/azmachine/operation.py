"""Cancellation and deadline shared by every remote call of one invocation.

An OperationContext is created per driver call. All Azure calls of that
invocation, including the concurrent deletion tasks, check the same context,
so cancelling it (or running past its deadline) makes each in-flight task fail
on its own.
"""

import threading
import time

from azmachine.errors import OperationCancelledError

DEFAULT_POLL_INTERVAL = 5.0


class OperationContext:
    """Cancellation flag plus optional deadline.

    Example:
        >>> ctx = OperationContext(timeout=600)
        >>> ctx.check("get vm")  # raises OperationCancelledError once cancelled
    """

    def __init__(self, timeout: float | None = None, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self._cancelled = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None
        self.poll_interval = poll_interval

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set() or self.expired

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, what: str) -> None:
        """Raise if the operation must not continue.

        Raises:
            OperationCancelledError: If cancelled or past the deadline
        """
        if self._cancelled.is_set():
            raise OperationCancelledError(f"operation cancelled before {what}")
        if self.expired:
            raise OperationCancelledError(f"operation timed out before {what}")

    def next_wait(self) -> float:
        """How long to block before re-checking, bounded by the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return self.poll_interval
        return min(self.poll_interval, remaining)


__all__ = ["DEFAULT_POLL_INTERVAL", "OperationContext"]
