# =======================================================================================
# gatewatch/services/checkin_service.py - Check-in Ingest Pipeline
# =======================================================================================
"""
Check-in ingest: ingest -> score -> finalize -> effects.

* ingest   - validate, resolve the gate, register the wristband, load history
* score    - pure fraud scoring of the not-yet-stored check-in
* finalize - store the check-in with its final outcome; an auto-block lands in
             the same transaction
* effects  - fraud state, alerts, impossible travel and binding enforcement,
             each in its own transaction; failures are logged and never undo
             the stored check-in or another effect

Each (wristband, event) pair is processed by one thread at a time.
"""
import logging
from typing import Callable, List, Optional, Tuple
from sqlalchemy import insert
from sqlalchemy.engine import Connection
from ..database import DatabaseManager, db_manager
from ..models.enums import AlertType, AuditAction
from ..models.schemas import (
    AdaptiveThresholds, CheckinRecord, CheckinRequest, CheckinResponse, FraudDecision, Gate,
)
from ..models.tables import checkin_logs
from ..utils.locks import KeyedLock, checkin_locks
from ..utils.validators import CheckinValidator
from .alert_service import AlertService
from .fraud_scoring import FraudScoringService
from .gate_service import GateService
from .impossible_travel import ImpossibleTravelService
from .threshold_service import ThresholdService
from .wristband_service import WristbandService

logger = logging.getLogger(__name__)


class CheckinService:
    """Runs every reported check-in through the detection engines."""

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        alert_service: Optional[AlertService] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.db = db or db_manager
        self.alert_service = alert_service or AlertService()
        self.locks = locks or checkin_locks
        self.wristband_service = WristbandService()
        self.threshold_service = ThresholdService()
        self.gate_service = GateService(self.alert_service)
        self.fraud_service = FraudScoringService(self.alert_service, self.wristband_service, locks=self.locks)
        self.travel_service = ImpossibleTravelService(self.alert_service)

    def record_checkin(self, request: CheckinRequest) -> CheckinResponse:
        request = CheckinValidator.validate(request)

        with self.locks.hold((request.wristband_id, request.event_id)):
            # ---- ingest ----
            with self.db.get_connection() as conn:
                thresholds = self.threshold_service.get(conn, request.event_id)
                gate = self.gate_service.resolve_gate(conn, request.event_id, request.gate_id, request.gate_name)
                wristband = self.wristband_service.get_or_create(
                    conn, request.event_id, request.wristband_id, request.category
                )
                history = self.wristband_service.history(conn, request.event_id, request.wristband_id)

            current = CheckinRecord(
                event_id=request.event_id,
                wristband_id=request.wristband_id,
                gate_id=gate.id if gate else None,
                location=gate.name if gate else request.gate_name,
                timestamp=request.timestamp,
                outcome=request.outcome,
            )

            # ---- score ----
            decision: Optional[FraudDecision] = None
            final_outcome = request.outcome
            if wristband.status == "blocked":
                final_outcome = "blocked"
            elif request.outcome == "success":
                try:
                    decision = self.fraud_service.score_checkin(history, current, thresholds)
                    final_outcome = decision.final_outcome
                except Exception:
                    logger.exception("Fraud scoring failed for %s; keeping outcome %s", request.wristband_id, request.outcome)

            # ---- finalize ----
            try:
                checkin_id, gate = self._finalize(request, current, gate, final_outcome, decision, thresholds)
            except Exception:
                if decision is None or not decision.auto_block:
                    raise
                logger.exception("Auto-block of %s failed; storing original outcome", request.wristband_id)
                decision = None
                final_outcome = request.outcome
                checkin_id, gate = self._finalize(request, current, gate, final_outcome, None, thresholds)

            # ---- effects ----
            stored = current.model_copy(update={
                "id": checkin_id,
                "outcome": final_outcome,
                "gate_id": gate.id if gate else None,
                "location": gate.name if gate else current.location,
            })
            alerts = self._apply_effects(stored, decision, wristband.category, thresholds)

        return CheckinResponse(
            checkin_id=checkin_id,
            processed_outcome=final_outcome,
            original_outcome=request.outcome,
            gate_id=gate.id if gate else None,
            gate_name=gate.name if gate else None,
            fraud_score=decision.state.fraud_score if decision else None,
            alerts=alerts,
            message=self._message(final_outcome, request.outcome, decision),
        )

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------
    def _finalize(
        self,
        request: CheckinRequest,
        current: CheckinRecord,
        gate: Optional[Gate],
        final_outcome: str,
        decision: Optional[FraudDecision],
        thresholds: AdaptiveThresholds,
    ) -> Tuple[int, Optional[Gate]]:
        with self.db.get_connection() as conn:
            if gate is not None:
                # the gate may have been merged away since ingest
                gate = self.gate_service.resolve_gate(conn, request.event_id, gate_id=gate.id)

            notes = None
            if decision is not None and decision.auto_block:
                notes = {
                    "auto_blocked": True,
                    "fraud_score": decision.state.fraud_score,
                    "reason": decision.reason,
                }
            elif final_outcome == "blocked":
                notes = {"reason": "wristband blocked"}

            result = conn.execute(
                insert(checkin_logs).values(
                    event_id=request.event_id,
                    wristband_id=request.wristband_id,
                    gate_id=gate.id if gate else None,
                    location=gate.name if gate else current.location,
                    timestamp=request.timestamp,
                    outcome=final_outcome,
                    processing_time_ms=request.processing_time_ms,
                    app_lat=request.latitude,
                    app_lon=request.longitude,
                    app_accuracy=request.accuracy,
                    notes=notes,
                )
            )
            checkin_id = result.inserted_primary_key[0]

            if gate is not None:
                gate = self.gate_service.record_scan(conn, gate, final_outcome)

            if decision is not None and decision.auto_block:
                self.wristband_service.block(
                    conn, request.event_id, request.wristband_id,
                    reason=decision.reason,
                    fraud_score=decision.state.fraud_score,
                    action=AuditAction.AUTO_BLOCK,
                    threshold=thresholds.fraud_auto_block_threshold,
                    now=request.timestamp,
                )
                logger.warning(
                    "[%s] wristband %s auto-blocked (score %s)",
                    request.event_id, request.wristband_id, decision.state.fraud_score,
                )

        return checkin_id, gate

    def _apply_effects(
        self,
        record: CheckinRecord,
        decision: Optional[FraudDecision],
        category: str,
        thresholds: AdaptiveThresholds,
    ) -> List[str]:
        """Each effect runs in its own transaction; a failed one contributes no alerts."""
        raised: List[str] = []
        if decision is not None:
            raised.extend(self._run_effect(
                "fraud state", record, lambda conn: self.fraud_service.apply_decision(conn, decision)
            ))

        raised.extend(self._run_effect(
            "impossible travel", record, lambda conn: self._check_travel(conn, record, thresholds)
        ))

        if record.outcome == "success" and record.gate_id is not None:
            raised.extend(self._run_effect(
                "binding enforcement", record, lambda conn: self._enforce_binding(conn, record, category)
            ))

        return raised

    def _run_effect(self, name: str, record: CheckinRecord, effect: Callable[[Connection], List[str]]) -> List[str]:
        try:
            with self.db.get_connection() as conn:
                return effect(conn)
        except Exception:
            logger.exception("Post-check-in %s failed for check-in %s", name, record.id)
            return []

    def _check_travel(self, conn: Connection, record: CheckinRecord, thresholds: AdaptiveThresholds) -> List[str]:
        travels = self.travel_service.check_checkin(conn, record, thresholds)
        return [AlertType.IMPOSSIBLE_LOCATION.value for _ in travels]

    def _enforce_binding(self, conn: Connection, record: CheckinRecord, category: str) -> List[str]:
        violation = self.gate_service.enforce_binding(
            conn, record.gate_id, record.event_id, category, record.timestamp
        )
        return [violation.alert_type] if violation else []

    @staticmethod
    def _message(final_outcome: str, original_outcome: str, decision: Optional[FraudDecision]) -> str:
        if decision is not None and decision.auto_block:
            return f"Wristband blocked: fraud score {decision.state.fraud_score}"
        if final_outcome == "blocked":
            return "Wristband is blocked"
        if final_outcome != original_outcome:
            return f"Check-in recorded as {final_outcome}"
        return "Check-in recorded"
