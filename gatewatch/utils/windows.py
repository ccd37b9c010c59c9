# =======================================================================================
# gatewatch/utils/windows.py - Sliding Time Windows
# =======================================================================================
from collections import deque
from datetime import datetime, timedelta
from typing import Deque


class RollingWindow:
    """
    Time-ordered sliding window over event timestamps.

    Entries must be pushed in (timestamp, insertion) order. An entry exactly
    ``span`` older than the newest one is still inside the window.
    """

    def __init__(self, span: timedelta):
        self.span = span
        self._items: Deque[datetime] = deque()

    def _evict(self, now: datetime):
        cutoff = now - self.span
        while self._items and self._items[0] < cutoff:
            self._items.popleft()

    def push(self, ts: datetime) -> int:
        """Add an entry and return how many entries the window now holds."""
        self._evict(ts)
        self._items.append(ts)
        return len(self._items)

    def count_at(self, now: datetime) -> int:
        """Entries inside the window ending at ``now`` (does not add anything)."""
        self._evict(now)
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)
