"""
k8s_registrar.controller.cancel

Cancellation and deadline signal passed into every reconcile attempt.
"""

import threading
import time
from typing import Optional

from ..identity.exceptions import ReconcileCancelledError


class CancelToken:
    """Caller-controlled cancellation with an optional deadline.

    Store calls check the token before they start and keep checking it while
    the request is in flight, so an outstanding call is abandoned as soon as
    ``cancel()`` is called or the deadline passes. The remaining time is also
    sent as the HTTP request timeout.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None if there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self, operation: str = "reconcile") -> None:
        """Raise ReconcileCancelledError if the token has fired."""
        if self._event.is_set():
            raise ReconcileCancelledError(f"{operation} cancelled")
        if self.cancelled:
            raise ReconcileCancelledError(f"{operation} deadline exceeded")
