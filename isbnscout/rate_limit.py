from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Hashable


class SlidingWindowRateLimiter:
    """Allow at most ``max_calls`` per key within any ``window_seconds`` span."""

    def __init__(self, max_calls: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: Dict[Hashable, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: Hashable) -> bool:
        with self._lock:
            now = self._clock()
            calls = self._calls[key]
            while calls and now - calls[0] >= self.window_seconds:
                calls.popleft()
            if len(calls) >= self.max_calls:
                return False
            calls.append(now)
            return True

    def retry_after(self, key: Hashable) -> float:
        with self._lock:
            calls = self._calls.get(key)
            if not calls or len(calls) < self.max_calls:
                return 0.0
            return max(0.0, self.window_seconds - (self._clock() - calls[0]))

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()


LOGIN_LIMIT = (5, 15 * 60)
SIGNUP_LIMIT = (3, 60 * 60)
PRICING_LIMIT = (20, 60)
API_LIMIT = (100, 60)
