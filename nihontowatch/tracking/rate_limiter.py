"""In-process fixed-window rate limiter keyed by session."""

import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """Allow at most ``max_requests`` per key inside each window.

    State lives in process memory and is lost on restart. A window starts on
    the first request for a key; once the current time passes its reset
    time the next request opens a fresh window.
    """

    def __init__(self, max_requests: int = 30, window_seconds: float = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def check(self, key: str, now: Optional[float] = None) -> bool:
        """Record a request for ``key``.

        Args:
            key: Session identifier
            now: Current time in seconds (defaults to time.monotonic())

        Returns:
            True if the request is allowed
        """
        now = time.monotonic() if now is None else now

        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True

            if window.count >= self.max_requests:
                return False

            window.count += 1
            return True

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop expired windows. Returns the number removed."""
        now = time.monotonic() if now is None else now

        with self._lock:
            expired = [key for key, w in self._windows.items() if now > w.reset_at]
            for key in expired:
                del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)
