"""Sliding-window admission control keyed by entity type."""
import threading
from collections import deque
from typing import Deque, Dict, Hashable

from splitsync.timeutils import Clock, now_ms


class RateThrottle:
    """
    Admit at most `max_requests` per key within any rolling `window_ms`.

    Pure function of the clock and the recorded history. A single lock
    guards the shared table.
    """

    def __init__(self, window_ms: int, max_requests: int, clock: Clock = now_ms):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock = clock
        self._requests: Dict[Hashable, Deque[int]] = {}
        self._lock = threading.Lock()

    def try_acquire(self, key: Hashable) -> bool:
        with self._lock:
            now = self._clock()
            window_start = now - self.window_ms
            log = self._requests.setdefault(key, deque())
            while log and log[0] < window_start:
                log.popleft()
            if len(log) < self.max_requests:
                log.append(now)
                return True
            return False

    def reset(self, key: Hashable) -> None:
        with self._lock:
            self._requests.pop(key, None)
