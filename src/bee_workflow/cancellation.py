"""Cooperative cancellation shared by every stage of one execution."""
from __future__ import annotations

import threading
from typing import Optional

from .errors import WorkflowCancelledError


class CancellationToken:
    """Thread-safe cancel signal.

    Parallel and detached branches may run in worker threads, so the flag is
    backed by a ``threading.Event`` rather than an asyncio primitive.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @classmethod
    def none(cls) -> "CancellationToken":
        """A fresh token nobody holds a reference to, so it never fires."""
        return cls()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise WorkflowCancelledError(stage)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block the calling thread until cancelled or ``timeout`` elapses."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled else "active"
        return f"CancellationToken({state})"
