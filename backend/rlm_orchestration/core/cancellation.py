"""Cooperative cancellation for executions."""

import threading
from typing import Optional


class CancellationToken:
    """Flag polled by the orchestrator at iteration boundaries.

    Setting it never interrupts an in-flight model call or code execution.
    Safe to cancel from another thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason
