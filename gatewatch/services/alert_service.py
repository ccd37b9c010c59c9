# =======================================================================================
# gatewatch/services/alert_service.py - Alert/Action Sink
# =======================================================================================
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection
from ..models.enums import AlertSeverity, AlertType, NOTIFY_SEVERITIES
from ..models.schemas import AlertPayload, SystemAlert
from ..models.tables import system_alerts
from ..utils.clock import utcnow
from ..database import after_commit
from ..utils.exceptions import AlertNotFoundError, DependencyUnavailableError
from .notification_service import NotificationService, notification_service

logger = logging.getLogger(__name__)


class AlertService:
    """Persists system alerts and forwards high/critical ones to the notification channel."""

    def __init__(self, notifier: Optional[NotificationService] = None):
        self.notifier = notifier or notification_service

    def emit(
        self,
        conn: Connection,
        event_id: str,
        alert_type: AlertType,
        severity: AlertSeverity,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> SystemAlert:
        now = utcnow()
        data = data or {}
        result = conn.execute(
            insert(system_alerts).values(
                event_id=event_id,
                alert_type=alert_type.value,
                severity=severity,
                message=message,
                data=data,
                resolved=False,
                created_at=now,
            )
        )
        alert = SystemAlert(
            id=result.inserted_primary_key[0],
            event_id=event_id,
            alert_type=alert_type.value,
            severity=severity,
            message=message,
            data=data,
            created_at=now,
        )
        logger.info("[%s] %s alert (%s): %s", event_id, alert.alert_type, severity, message)

        if severity in NOTIFY_SEVERITIES:
            payload = AlertPayload(
                event_id=event_id,
                alert_type=alert.alert_type,
                severity=severity,
                message=message,
                data=data,
            )
            # subscribers only hear about alerts that were actually stored
            after_commit(conn, lambda: self._publish(alert.id, payload))

        return alert

    def _publish(self, alert_id: int, payload: AlertPayload):
        try:
            self.notifier.publish(payload)
        except DependencyUnavailableError as e:
            logger.warning("Alert %s stored but notification failed: %s", alert_id, e)

    def list_alerts(
        self,
        conn: Connection,
        event_id: str,
        resolved: Optional[bool] = None,
        severity: Optional[str] = None,
        alert_type: Optional[str] = None,
        limit: int = 200,
    ) -> List[SystemAlert]:
        query = select(system_alerts).where(system_alerts.c.event_id == event_id)
        if resolved is not None:
            query = query.where(system_alerts.c.resolved == resolved)
        if severity:
            query = query.where(system_alerts.c.severity == severity)
        if alert_type:
            query = query.where(system_alerts.c.alert_type == alert_type)

        rows = conn.execute(
            query.order_by(system_alerts.c.id.desc()).limit(limit)
        ).mappings().all()
        return [self._to_model(row) for row in rows]

    def resolve(self, conn: Connection, alert_id: int) -> SystemAlert:
        row = conn.execute(
            select(system_alerts).where(system_alerts.c.id == alert_id)
        ).mappings().first()
        if not row:
            raise AlertNotFoundError(f"Alert {alert_id} not found")

        if not row["resolved"]:
            conn.execute(
                update(system_alerts)
                .where(system_alerts.c.id == alert_id)
                .values(resolved=True, resolved_at=utcnow())
            )
            row = conn.execute(
                select(system_alerts).where(system_alerts.c.id == alert_id)
            ).mappings().first()

        return self._to_model(row)

    @staticmethod
    def _to_model(row) -> SystemAlert:
        data = dict(row)
        data["data"] = data.get("data") or {}
        return SystemAlert(**data)
