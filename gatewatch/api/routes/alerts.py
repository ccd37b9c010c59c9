# =======================================================================================
# gatewatch/api/routes/alerts.py - Alert Endpoints
# =======================================================================================
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.engine import Connection
from ...models.schemas import AlertPayload, SystemAlert
from ...services.alert_service import AlertService
from ...services.notification_service import notification_service
from ...utils.exceptions import GateWatchError
from ..dependencies import get_db_connection, http_error

router = APIRouter()
alert_service = AlertService()


@router.get("/events/{event_id}/alerts", response_model=List[SystemAlert])
def list_alerts(
    event_id: str,
    resolved: Optional[bool] = Query(None),
    severity: Optional[str] = Query(None),
    alert_type: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    conn: Connection = Depends(get_db_connection),
):
    return alert_service.list_alerts(conn, event_id, resolved, severity, alert_type, limit)


@router.post("/alerts/{alert_id}/resolve", response_model=SystemAlert)
def resolve_alert(alert_id: int, conn: Connection = Depends(get_db_connection)):
    try:
        return alert_service.resolve(conn, alert_id)
    except GateWatchError as e:
        raise http_error(e)


@router.get("/notifications", response_model=List[AlertPayload])
def recent_notifications(limit: int = Query(50, ge=1, le=500)):
    """Most recent high/critical alert payloads, newest first."""
    return notification_service.recent(limit)
