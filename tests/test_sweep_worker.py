"""Tests for the background sweep worker, driven synchronously."""
import threading
from datetime import timedelta

from sqlalchemy import select

from gatewatch.models.tables import gate_merge_suggestions, wristbands
from gatewatch.utils.clock import utcnow
from gatewatch.workers.sweep_worker import SweepWorker

from .factories import EVENT_ID, add_checkin, add_gate, add_wristband


def seed_rapid_wristband(db, count=6):
    start = utcnow() - timedelta(minutes=10)
    with db.get_connection() as conn:
        add_wristband(conn, "WB-1")
        for i in range(count):
            add_checkin(conn, "WB-1", start + timedelta(seconds=i * 5))
        add_gate(conn, "Main Gate")
        add_gate(conn, "Main Gate 2")


def test_disabled_worker_does_not_start(db):
    worker = SweepWorker(db, interval=0)
    worker.start()
    assert not worker.running


def test_run_once_blocks_and_suggests(db):
    seed_rapid_wristband(db)
    SweepWorker(db, interval=0).run_once()

    with db.get_connection() as conn:
        status = conn.execute(select(wristbands.c.status).where(wristbands.c.wristband_id == "WB-1")).scalar()
        suggestions = conn.execute(select(gate_merge_suggestions)).mappings().all()

    assert status == "blocked"
    assert len(suggestions) == 1
    assert suggestions[0]["event_id"] == EVENT_ID


def test_quiet_events_are_skipped(db):
    with db.get_connection() as conn:
        add_checkin(conn, "WB-1", utcnow() - timedelta(hours=3))
        add_gate(conn, "Main Gate")
        add_gate(conn, "Main Gate 2")

    SweepWorker(db, interval=0).run_once()

    with db.get_connection() as conn:
        assert conn.execute(select(gate_merge_suggestions)).first() is None


def test_cancelled_pass_keeps_checkpoint(db):
    seed_rapid_wristband(db)
    worker = SweepWorker(db, interval=0)
    worker._stop = threading.Event()
    worker._stop.set()

    worker.sweep_event(EVENT_ID)
    assert worker._checkpoints[EVENT_ID] == 0

    worker._stop.clear()
    worker.sweep_event(EVENT_ID)
    assert EVENT_ID not in worker._checkpoints
