# =======================================================================================
# gatewatch/utils/locks.py - Per-Key Locks
# =======================================================================================
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Tuple


class KeyedLock:
    """
    Mutual exclusion scoped to a key, e.g. (wristband_id, event_id).

    Locks are created on demand and dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


# Global instance: ingest and the block sweep serialize on (wristband_id, event_id)
checkin_locks = KeyedLock()
