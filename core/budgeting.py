"""Sliding-window cap on downstream analysis requests."""

from __future__ import annotations

from collections import deque
from typing import Deque


class RequestBudget:
    """Allow at most ``max_requests`` downstream calls per ``window_s`` seconds.

    Owned by the cascade trigger task, so no locking. A non-positive
    ``max_requests`` disables the cap.
    """

    def __init__(self, max_requests: int, window_s: float) -> None:
        self.max_requests = int(max_requests)
        self.window_s = float(window_s)
        self._started: Deque[float] = deque()

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def allow(self, now: float) -> bool:
        if not self.enabled:
            return True
        self._expire(now)
        return len(self._started) < self.max_requests

    def record(self, now: float) -> None:
        if self.enabled:
            self._started.append(now)

    def next_slot_at(self, now: float) -> float:
        """When the next request may start; ``now`` if one is allowed already."""

        if self.allow(now):
            return now
        return self._started[0] + self.window_s

    def _expire(self, now: float) -> None:
        # a request leaves the window exactly window_s after it started
        cutoff = now - self.window_s
        while self._started and self._started[0] <= cutoff:
            self._started.popleft()
