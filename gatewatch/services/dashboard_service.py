# =======================================================================================
# gatewatch/services/dashboard_service.py
# =======================================================================================

from datetime import datetime
from typing import Dict, List
from sqlalchemy import func, select
from sqlalchemy.engine import Connection
from ..models.schemas import EventSummary
from ..models.tables import checkin_logs, gate_merge_suggestions, gates, system_alerts, wristbands


class DashboardService:
    """Aggregated per-event counters for the dashboard."""

    # ---------- helpers ----------

    @staticmethod
    def _grouped(conn: Connection, column, *criteria) -> Dict[str, int]:
        rows = conn.execute(
            select(column, func.count()).where(*criteria).group_by(column)
        ).all()
        return {str(key): int(count or 0) for key, count in rows}

    # ---------- summary ----------

    def get_summary(self, conn: Connection, event_id: str) -> EventSummary:
        outcomes = self._grouped(conn, checkin_logs.c.outcome, checkin_logs.c.event_id == event_id)

        unique_wristbands = conn.execute(
            select(func.count(func.distinct(checkin_logs.c.wristband_id)))
            .where(checkin_logs.c.event_id == event_id)
        ).scalar()

        blocked_wristbands = conn.execute(
            select(func.count())
            .select_from(wristbands)
            .where(wristbands.c.event_id == event_id, wristbands.c.status == "blocked")
        ).scalar()

        pending = conn.execute(
            select(func.count())
            .select_from(gate_merge_suggestions)
            .where(gate_merge_suggestions.c.event_id == event_id, gate_merge_suggestions.c.status == "pending")
        ).scalar()

        open_by_severity = self._grouped(
            conn, system_alerts.c.severity,
            system_alerts.c.event_id == event_id, system_alerts.c.resolved.is_(False),
        )

        return EventSummary(
            event_id=event_id,
            total_checkins=sum(outcomes.values()),
            successful_checkins=outcomes.get("success", 0),
            blocked_checkins=outcomes.get("blocked", 0),
            unique_wristbands=int(unique_wristbands or 0),
            blocked_wristbands=int(blocked_wristbands or 0),
            gates_by_status=self._grouped(conn, gates.c.status, gates.c.event_id == event_id),
            pending_merge_suggestions=int(pending or 0),
            open_alerts=sum(open_by_severity.values()),
            open_alerts_by_severity=open_by_severity,
        )

    # ---------- activity ----------

    def active_events(self, conn: Connection, since: datetime) -> List[str]:
        """Events with at least one check-in at or after ``since``."""
        rows = conn.execute(
            select(checkin_logs.c.event_id)
            .where(checkin_logs.c.timestamp >= since)
            .distinct()
            .order_by(checkin_logs.c.event_id)
        ).all()
        return [row[0] for row in rows]
