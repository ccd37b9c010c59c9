# =======================================================================================
# gatewatch/services/fraud_scoring.py - Fraud Scoring Engine
# =======================================================================================
"""
Per-wristband fraud score, recomputed from check-in history on every successful scan.

The score is a pure function of the ordered history, so recomputing it (after a
crash, a replay or a lost update) always converges on the same value:

    score = min(100, 25 * rapid_checkins + 15 * blocked_attempts + (10 if checkins > 10))

A check-in counts as *rapid* when its own trailing 5-minute window holds more than
three check-ins.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection
from ..config import config
from ..database import DatabaseManager
from ..models.enums import AlertSeverity, AlertType, AuditAction
from ..models.schemas import (
    AdaptiveThresholds, CheckinRecord, FraudDecision, FraudSweepRow, WristbandFraudState,
)
from ..models.tables import wristband_fraud_state
from ..utils.clock import utcnow
from ..utils.locks import KeyedLock, checkin_locks
from ..utils.windows import RollingWindow
from .alert_service import AlertService
from .wristband_service import WristbandService

logger = logging.getLogger(__name__)

RAPID_WINDOW = timedelta(minutes=5)
HOURLY_WINDOW = timedelta(hours=1)
SWEEP_ACTIVITY_WINDOW = timedelta(hours=1)

RAPID_CHECKIN_LIMIT = 3        # more than this many inside the window is rapid
CRITICAL_TRAILING_COUNT = 5    # more than this many is a critical alert
HIGH_VOLUME_LIMIT = 10

SCORE_WEIGHTS = {
    "rapid_checkin": 25,
    "blocked_attempt": 15,
    "high_volume": 10,
}
MAX_SCORE = 100


def _order_key(record: CheckinRecord):
    # unsaved records sort after every stored peer with the same timestamp
    return record.timestamp, record.id if record.id is not None else math.inf


def order_history(history: Sequence[CheckinRecord]) -> List[CheckinRecord]:
    return sorted(history, key=_order_key)


class FraudScoringService:
    """Fraud scoring, auto-block policy and the periodic block sweep."""

    def __init__(
        self,
        alert_service: Optional[AlertService] = None,
        wristband_service: Optional[WristbandService] = None,
        lookback_hours: Optional[int] = config.FRAUD_LOOKBACK_HOURS,
        locks: Optional[KeyedLock] = None,
    ):
        self.alert_service = alert_service or AlertService()
        self.wristband_service = wristband_service or WristbandService()
        self.lookback_hours = lookback_hours
        self.locks = locks or checkin_locks

    # ------------------------------------------------------------------
    # Pure scoring
    # ------------------------------------------------------------------
    @staticmethod
    def calculate_score(rapid_checkins: int, blocked_attempts: int, checkin_count: int) -> int:
        score = (
            rapid_checkins * SCORE_WEIGHTS["rapid_checkin"]
            + blocked_attempts * SCORE_WEIGHTS["blocked_attempt"]
            + (SCORE_WEIGHTS["high_volume"] if checkin_count > HIGH_VOLUME_LIMIT else 0)
        )
        return min(MAX_SCORE, score)

    @staticmethod
    def count_rapid_checkins(history: Sequence[CheckinRecord]) -> int:
        """Check-ins whose own trailing 5-minute window holds more than three check-ins."""
        window = RollingWindow(RAPID_WINDOW)
        rapid = 0
        for record in order_history(history):
            if window.push(record.timestamp) > RAPID_CHECKIN_LIMIT:
                rapid += 1
        return rapid

    @staticmethod
    def trailing_count(history: Sequence[CheckinRecord], at: datetime, span: timedelta = RAPID_WINDOW) -> int:
        """Successful check-ins inside [at - span, at]."""
        start = at - span
        return sum(
            1 for record in history
            if record.outcome == "success" and start <= record.timestamp <= at
        )

    @staticmethod
    def alert_severity(trailing_count: int) -> Optional[AlertSeverity]:
        if trailing_count > CRITICAL_TRAILING_COUNT:
            return "critical"
        if trailing_count > RAPID_CHECKIN_LIMIT:
            return "high"
        return None

    @staticmethod
    def should_auto_block(score: int, threshold: int) -> bool:
        return score >= threshold

    def _within_lookback(self, history: Sequence[CheckinRecord], at: datetime) -> List[CheckinRecord]:
        if not self.lookback_hours:
            return list(history)
        start = at - timedelta(hours=self.lookback_hours)
        return [record for record in history if record.timestamp >= start]

    def compute_state(
        self,
        history: Sequence[CheckinRecord],
        wristband_id: str,
        event_id: str,
        at: Optional[datetime] = None,
    ) -> WristbandFraudState:
        """Fraud state for the history as seen at ``at`` (defaults to the last check-in)."""
        ordered = order_history(history)
        if at is None:
            at = ordered[-1].timestamp if ordered else utcnow()
        ordered = [record for record in self._within_lookback(ordered, at) if record.timestamp <= at]

        checkin_count = sum(1 for record in ordered if record.outcome == "success")
        blocked_attempts = sum(1 for record in ordered if record.outcome == "blocked")
        rapid_checkins = self.count_rapid_checkins(ordered)

        return WristbandFraudState(
            wristband_id=wristband_id,
            event_id=event_id,
            checkin_count=checkin_count,
            rapid_checkins=rapid_checkins,
            blocked_attempts=blocked_attempts,
            trailing_count_5m=self.trailing_count(ordered, at),
            hourly_count=self.trailing_count(ordered, at, HOURLY_WINDOW),
            fraud_score=self.calculate_score(rapid_checkins, blocked_attempts, checkin_count),
            computed_at=at,
        )

    def score_checkin(
        self,
        history: Sequence[CheckinRecord],
        current: CheckinRecord,
        thresholds: AdaptiveThresholds,
    ) -> FraudDecision:
        """
        Score a new successful check-in against its wristband's prior history.

        ``current`` is the not-yet-persisted scan; it is scored as the newest
        entry at its own timestamp.
        """
        combined = [record for record in history if record.id != current.id or current.id is None]
        combined.append(current)

        state = self.compute_state(combined, current.wristband_id, current.event_id, at=current.timestamp)
        severity = self.alert_severity(state.trailing_count_5m)
        auto_block = self.should_auto_block(state.fraud_score, thresholds.fraud_auto_block_threshold)

        reason = None
        if auto_block:
            reason = "Automatic fraud detection"
            state.blocked_at = current.timestamp

        return FraudDecision(
            state=state,
            alert_severity=severity,
            auto_block=auto_block,
            final_outcome="blocked" if auto_block else current.outcome,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save_state(self, conn: Connection, state: WristbandFraudState):
        """Upsert the derived state row for (wristband, event)."""
        values = state.model_dump()
        key = (
            (wristband_fraud_state.c.wristband_id == state.wristband_id)
            & (wristband_fraud_state.c.event_id == state.event_id)
        )
        existing = conn.execute(select(wristband_fraud_state.c.blocked_at).where(key)).first()
        if existing:
            # keep the first block time until an operator unblocks
            if values["blocked_at"] is None:
                values["blocked_at"] = existing[0]
            conn.execute(update(wristband_fraud_state).where(key).values(**values))
        else:
            conn.execute(insert(wristband_fraud_state).values(**values))

    def clear_block(self, conn: Connection, event_id: str, wristband_id: str):
        conn.execute(
            update(wristband_fraud_state)
            .where(
                (wristband_fraud_state.c.wristband_id == wristband_id)
                & (wristband_fraud_state.c.event_id == event_id)
            )
            .values(blocked_at=None)
        )

    def current_state(self, conn: Connection, event_id: str, wristband_id: str) -> WristbandFraudState:
        """Recompute the state from stored history right now."""
        history = self.wristband_service.history(conn, event_id, wristband_id)
        state = self.compute_state(history, wristband_id, event_id, at=utcnow())
        wristband = self.wristband_service.get(conn, event_id, wristband_id)
        if wristband and wristband.status == "blocked":
            state.blocked_at = wristband.blocked_at
        return state

    def apply_decision(self, conn: Connection, decision: FraudDecision) -> List[str]:
        """Persist the state and raise the alerts a decision calls for. Returns alert types raised."""
        state = decision.state
        raised: List[str] = []
        self.save_state(conn, state)

        if decision.alert_severity:
            self.alert_service.emit(
                conn,
                state.event_id,
                AlertType.FRAUD_DETECTION,
                decision.alert_severity,
                f"Multiple check-ins detected for wristband {state.wristband_id}",
                {
                    "wristband_id": state.wristband_id,
                    "checkin_count": state.trailing_count_5m,
                    "time_window": "5 minutes",
                    "fraud_score": state.fraud_score,
                },
            )
            raised.append(AlertType.FRAUD_DETECTION.value)

        if decision.auto_block:
            self.alert_service.emit(
                conn,
                state.event_id,
                AlertType.AUTO_BLOCK,
                "critical",
                f"Wristband {state.wristband_id} automatically blocked (fraud score {state.fraud_score})",
                {
                    "wristband_id": state.wristband_id,
                    "fraud_score": state.fraud_score,
                    "rapid_checkins": state.rapid_checkins,
                    "blocked_attempts": state.blocked_attempts,
                    "reason": decision.reason,
                },
            )
            raised.append(AlertType.AUTO_BLOCK.value)

        return raised

    # ------------------------------------------------------------------
    # Batch sweep
    # ------------------------------------------------------------------
    def sweep(
        self,
        db: DatabaseManager,
        event_id: str,
        thresholds: AdaptiveThresholds,
        now: Optional[datetime] = None,
    ) -> List[FraudSweepRow]:
        """Block every recently active wristband at or above the sweep threshold."""
        now = now or utcnow()
        with db.get_connection() as conn:
            active = self.wristband_service.active_since(conn, event_id, now - SWEEP_ACTIVITY_WINDOW)

        rows: List[FraudSweepRow] = []
        for wristband_id in active:
            # same key as ingest; the block commits before the lock is released
            with self.locks.hold((wristband_id, event_id)), db.get_connection() as conn:
                rows.append(self.sweep_wristband(conn, event_id, wristband_id, thresholds, now))
        return rows

    def sweep_wristband(
        self,
        conn: Connection,
        event_id: str,
        wristband_id: str,
        thresholds: AdaptiveThresholds,
        now: datetime,
    ) -> FraudSweepRow:
        threshold = thresholds.fraud_sweep_block_threshold
        history = self.wristband_service.history(conn, event_id, wristband_id)
        state = self.compute_state(history, wristband_id, event_id, at=now)
        if state.fraud_score < threshold:
            return FraudSweepRow(wristband_id=wristband_id, fraud_score=state.fraud_score, blocked=False)

        newly_blocked = self.wristband_service.block(
            conn, event_id, wristband_id,
            reason=f"High fraud score: {state.fraud_score}",
            fraud_score=state.fraud_score,
            action=AuditAction.AUTO_BLOCK_FRAUD,
            threshold=threshold,
            now=now,
        )
        if newly_blocked:
            state.blocked_at = now
            self.alert_service.emit(
                conn, event_id, AlertType.AUTO_BLOCK, "high",
                f"Wristband {wristband_id} blocked by fraud sweep (score {state.fraud_score})",
                {"wristband_id": wristband_id, "fraud_score": state.fraud_score, "threshold": threshold},
            )
            logger.info("[%s] sweep blocked %s (score %s)", event_id, wristband_id, state.fraud_score)
        self.save_state(conn, state)
        return FraudSweepRow(
            wristband_id=wristband_id,
            fraud_score=state.fraud_score,
            blocked=True,
            already_blocked=not newly_blocked,
        )
