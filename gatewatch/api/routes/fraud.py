# =======================================================================================
# gatewatch/api/routes/fraud.py - Fraud Detection Endpoints
# =======================================================================================
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.engine import Connection
from ...database import DatabaseManager
from ...models.schemas import FraudSweepRow, ImpossibleTravel, Wristband, WristbandFraudState
from ...services.fraud_scoring import FraudScoringService
from ...services.impossible_travel import ImpossibleTravelService
from ...services.threshold_service import ThresholdService
from ...services.wristband_service import WristbandService
from ...utils.exceptions import GateWatchError, WristbandNotFoundError
from ..dependencies import get_actor, get_db_connection, get_db_manager, http_error

router = APIRouter()
fraud_service = FraudScoringService()
travel_service = ImpossibleTravelService()
threshold_service = ThresholdService()
wristband_service = WristbandService()


@router.get("/events/{event_id}/wristbands/{wristband_id}/fraud-score", response_model=WristbandFraudState)
def get_fraud_score(event_id: str, wristband_id: str, conn: Connection = Depends(get_db_connection)):
    if not wristband_service.get(conn, event_id, wristband_id):
        raise http_error(WristbandNotFoundError(f"Wristband {wristband_id} not found for event {event_id}"))
    return fraud_service.current_state(conn, event_id, wristband_id)


@router.post("/events/{event_id}/fraud/sweep", response_model=List[FraudSweepRow])
def run_fraud_sweep(event_id: str, db: DatabaseManager = Depends(get_db_manager)):
    """Block every recently active wristband at or above the sweep threshold."""
    with db.get_connection() as conn:
        thresholds = threshold_service.get(conn, event_id)
    return fraud_service.sweep(db, event_id, thresholds)


@router.get("/events/{event_id}/fraud/impossible-travel", response_model=List[ImpossibleTravel])
def get_impossible_travel(event_id: str, conn: Connection = Depends(get_db_connection)):
    thresholds = threshold_service.get(conn, event_id)
    return travel_service.detect_for_event(conn, event_id, thresholds)


@router.post("/events/{event_id}/wristbands/{wristband_id}/unblock", response_model=Wristband)
def unblock_wristband(
    event_id: str,
    wristband_id: str,
    conn: Connection = Depends(get_db_connection),
    actor: Optional[str] = Depends(get_actor),
):
    try:
        wristband = wristband_service.unblock(conn, event_id, wristband_id, actor)
        fraud_service.clear_block(conn, event_id, wristband_id)
        return wristband
    except GateWatchError as e:
        raise http_error(e)
