# =======================================================================================
# gatewatch/api/routes/dashboard.py - Event Overview and Threshold Endpoints
# =======================================================================================

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.engine import Connection

from ...models.schemas import AdaptiveThresholds, EventSummary, ThresholdsUpdate
from ...services.audit_service import AuditService
from ...services.dashboard_service import DashboardService
from ...services.threshold_service import ThresholdService
from ..dependencies import get_actor, get_db_connection

router = APIRouter()
dashboard_service = DashboardService()
threshold_service = ThresholdService()


@router.get("/events/{event_id}/summary", response_model=EventSummary)
def get_summary(event_id: str, conn: Connection = Depends(get_db_connection)):
    return dashboard_service.get_summary(conn, event_id)


@router.get("/events/{event_id}/thresholds", response_model=AdaptiveThresholds)
def get_thresholds(event_id: str, conn: Connection = Depends(get_db_connection)):
    return threshold_service.get(conn, event_id)


@router.put("/events/{event_id}/thresholds", response_model=AdaptiveThresholds)
def update_thresholds(
    event_id: str,
    changes: ThresholdsUpdate,
    conn: Connection = Depends(get_db_connection),
    actor: Optional[str] = Depends(get_actor),
):
    return threshold_service.update(conn, event_id, changes, actor)


@router.get("/events/{event_id}/audit")
def get_audit_log(
    event_id: str,
    limit: int = Query(200, ge=1, le=1000),
    conn: Connection = Depends(get_db_connection),
) -> List[Dict[str, Any]]:
    return AuditService.list_entries(conn, event_id, limit)
