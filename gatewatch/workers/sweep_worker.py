# =======================================================================================
# gatewatch/workers/sweep_worker.py - Background Sweep Worker
# =======================================================================================
import logging
import threading
from datetime import timedelta
from typing import Dict, Optional
from ..config import config
from ..database import DatabaseManager, db_manager
from ..services.alert_service import AlertService
from ..services.dashboard_service import DashboardService
from ..services.fraud_scoring import FraudScoringService
from ..services.gate_clustering import GateClusteringService
from ..services.threshold_service import ThresholdService
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)

ACTIVITY_WINDOW = timedelta(hours=1)


class SweepWorker:
    """Background worker running the fraud and gate clustering sweeps."""

    def __init__(self, db: Optional[DatabaseManager] = None, interval: int = config.SWEEP_INTERVAL_SECONDS):
        self.db = db or db_manager
        self.interval = interval
        alert_service = AlertService()
        self.fraud_service = FraudScoringService(alert_service)
        self.clustering_service = GateClusteringService(alert_service=alert_service)
        self.threshold_service = ThresholdService()
        self.dashboard_service = DashboardService()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # where each event's pairwise pass stopped when it was cancelled
        self._checkpoints: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------
    def start(self):
        """Start the sweep worker in a background thread."""
        if not self._should_start():
            return

        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="gatewatch-sweeps", daemon=True)
        self._thread.start()
        logger.info("[sweep] Worker started (every %ss)", self.interval)

    def stop(self, timeout: Optional[float] = None):
        """Stop the worker; an in-flight clustering pass stops between pairs."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    def _should_start(self) -> bool:
        if self.interval <= 0:
            logger.debug("[sweep] SWEEP_INTERVAL_SECONDS not set; skipping sweep worker.")
            return False

        if self.running:
            return False

        return True

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    def _run_loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("[sweep] Sweep failed; retrying next interval")

    def run_once(self):
        """One pass over every event with recent activity."""
        now = utcnow()
        with self.db.get_connection() as conn:
            events = self.dashboard_service.active_events(conn, now - ACTIVITY_WINDOW)

        for event_id in events:
            if self._stop.is_set():
                return
            self.sweep_event(event_id)

    def sweep_event(self, event_id: str):
        now = utcnow()
        with self.db.get_connection() as conn:
            thresholds = self.threshold_service.get(conn, event_id)
        rows = self.fraud_service.sweep(self.db, event_id, thresholds, now)
        blocked = [row for row in rows if row.blocked and not row.already_blocked]

        with self.db.get_connection() as conn:
            result = self.clustering_service.run(
                conn, event_id, thresholds,
                cancel_event=self._stop,
                start_index=self._checkpoints.get(event_id, 0),
                now=now,
            )

        if result.cancelled:
            self._checkpoints[event_id] = result.next_pair_index
        else:
            self._checkpoints.pop(event_id, None)

        logger.debug("[sweep] %s: %d blocked, %d suggestions", event_id, len(blocked), result.suggestions_created)


# ----------------------------------------------------------------------
# Global instance + entrypoint
# ----------------------------------------------------------------------
sweep_worker = SweepWorker()


def start_sweep_worker():
    """Called from the FastAPI lifespan hook."""
    sweep_worker.start()


def stop_sweep_worker():
    sweep_worker.stop(timeout=5)
