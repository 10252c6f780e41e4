"""Cooperative cancellation for an execution run."""

from __future__ import annotations

import threading
from typing import Any, Optional


class AbortSignal:
    """Thread-safe, one-shot abort flag with a reason.

    The loop checks it before running code; the sandbox checks it before
    every statement of the generated code.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[Any] = None

    def abort(self, reason: Any = "The operation was aborted") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[Any]:
        return self._reason

    def reason_text(self) -> str:
        if self._reason is None:
            return "The operation was aborted"
        return str(self._reason)
