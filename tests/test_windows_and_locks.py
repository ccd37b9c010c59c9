"""Tests for the sliding window and the keyed lock registry."""
import threading
import time
from datetime import datetime, timedelta

from gatewatch.utils.locks import KeyedLock
from gatewatch.utils.windows import RollingWindow

T0 = datetime(2026, 10, 18, 12, 0, 0)


def test_window_includes_entry_exactly_one_span_old():
    window = RollingWindow(timedelta(minutes=5))
    window.push(T0)
    assert window.push(T0 + timedelta(minutes=5)) == 2


def test_window_evicts_older_entries():
    window = RollingWindow(timedelta(minutes=5))
    window.push(T0)
    window.push(T0 + timedelta(minutes=1))
    assert window.push(T0 + timedelta(minutes=5, seconds=1)) == 2
    assert window.count_at(T0 + timedelta(minutes=20)) == 0
    assert len(window) == 0


def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def worker():
        with locks.hold(("WB-1", "EV")):
            if inside:
                overlaps.append(True)
            inside.append(1)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlaps == []
    assert locks.active_keys() == 0


def test_keyed_lock_allows_different_keys():
    locks = KeyedLock()
    with locks.hold("a"):
        acquired = threading.Event()

        def other():
            with locks.hold("b"):
                acquired.set()

        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(1)
        t.join()
        assert locks.active_keys() == 1
    assert locks.active_keys() == 0
