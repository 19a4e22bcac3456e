"""
Rate limiting for POST /api/token. In-memory sliding window per key (client IP).
Single process only; counts are lost on restart.
"""
import math
import threading
import time
from collections.abc import Callable

_WINDOW_SECONDS = 60


class SlidingWindowLimiter:
    def __init__(
        self,
        limit: int,
        window_seconds: int = _WINDOW_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._monotonic = monotonic
        self._store: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str) -> tuple[bool, int | None]:
        """
        Record a request for key if it is still under the limit for the current window.
        Refused requests are not recorded; retry_after is the whole seconds until the oldest
        counted request leaves the window (at least 1), None when allowed.
        """
        if self.limit <= 0:
            return True, None
        now = self._monotonic()
        with self._lock:
            timestamps = self._store.setdefault(key, [])
            cutoff = now - self.window_seconds
            timestamps[:] = [t for t in timestamps if t > cutoff]
            if len(timestamps) >= self.limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - min(timestamps))))
                return False, retry_after
            timestamps.append(now)
            return True, None

    def reset(self) -> None:
        with self._lock:
            self._store.clear()
