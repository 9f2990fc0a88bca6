"""In-memory sliding window limiter for credential-bearing endpoints."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from threading import Lock


class SlidingWindowRateLimiter:
    """Thread-safe per-key attempt limiter for a single process."""

    def __init__(self, max_requests: int, window_seconds: int, key_prefix: str = "rate") -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._key_prefix = key_prefix
        self._attempts: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Record an attempt for ``key``; ``False`` once the window is full."""
        now = time.monotonic()
        with self._lock:
            attempts = self._attempts[f"{self._key_prefix}:{key}"]
            while attempts and now - attempts[0] > self._window:
                attempts.popleft()
            if len(attempts) >= self._max_requests:
                return False
            attempts.append(now)
            return True

    def reset(self, key: str) -> None:
        """Forget recorded attempts, e.g. after a successful sign-in."""
        with self._lock:
            self._attempts.pop(f"{self._key_prefix}:{key}", None)
