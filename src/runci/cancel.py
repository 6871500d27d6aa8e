# cancel.py
from __future__ import annotations

import threading
from typing import Optional


class CancelToken:
    """
    Cooperative cancellation signal shared by one run.

    Job runners check it before each step; the step executor polls it while
    a command is running and kills the command once it is set.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()
