"""Thread-safe notification bus towards the control surface."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Deque, Iterable


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Notification emitted by the engine (classification, cascade, threshold)."""

    source: str
    kind: str
    content: str | None = None
    metadata: dict[str, object] = field(default_factory=dict)
    dedupe_key: str | None = None
    created_at: float = field(default_factory=time.time)


class EventBus:
    """Bounded FIFO of pending notifications.

    Producers run on the asyncio loop; consumers such as a socket bridge may
    drain from another thread.
    """

    def __init__(self, maxlen: int = 200) -> None:
        self._maxlen = maxlen
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._queue: Deque[Event] = deque()

    def publish(self, event: Event, *, coalesce: bool = False) -> None:
        with self._cond:
            if coalesce and event.dedupe_key:
                self._remove_matching(event.dedupe_key)
            if len(self._queue) >= self._maxlen:
                dropped = self._queue.popleft()
                LOGGER.warning("Event bus full; dropping oldest event from %s.", dropped.source)
            self._queue.append(event)
            self._cond.notify()

    def get_next(self, timeout: float | None = None) -> Event | None:
        with self._cond:
            if not self._queue:
                self._cond.wait(timeout=timeout)
            if not self._queue:
                return None
            return self._queue.popleft()

    def drain(self) -> Iterable[Event]:
        with self._cond:
            events = list(self._queue)
            self._queue.clear()
            return events

    def _remove_matching(self, dedupe_key: str) -> None:
        for index, event in enumerate(self._queue):
            if event.dedupe_key == dedupe_key:
                del self._queue[index]
                return
