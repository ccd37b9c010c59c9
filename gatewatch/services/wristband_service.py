# =======================================================================================
# gatewatch/services/wristband_service.py - Wristband State
# =======================================================================================
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import and_, insert, select, update
from sqlalchemy.engine import Connection
from ..models.enums import AuditAction, DEFAULT_CATEGORY
from ..models.schemas import CheckinRecord, Wristband
from ..models.tables import checkin_logs, wristbands
from ..utils.clock import utcnow
from ..utils.exceptions import InvalidTransitionError, WristbandNotFoundError
from .audit_service import AuditService


class WristbandService:
    """Wristband lookups, check-in history and block/unblock actions."""

    @staticmethod
    def _key(event_id: str, wristband_id: str):
        return and_(wristbands.c.event_id == event_id, wristbands.c.wristband_id == wristband_id)

    def get(self, conn: Connection, event_id: str, wristband_id: str) -> Optional[Wristband]:
        row = conn.execute(
            select(wristbands).where(self._key(event_id, wristband_id))
        ).mappings().first()
        return Wristband(**row) if row else None

    def get_or_create(
        self, conn: Connection, event_id: str, wristband_id: str, category: Optional[str] = None
    ) -> Wristband:
        """Find the wristband, registering it on its first scan."""
        existing = self.get(conn, event_id, wristband_id)
        if existing:
            # scanners may learn the category after the first scan
            if category and existing.category == DEFAULT_CATEGORY and category != DEFAULT_CATEGORY:
                conn.execute(
                    update(wristbands)
                    .where(self._key(event_id, wristband_id))
                    .values(category=category, updated_at=utcnow())
                )
                existing.category = category
            return existing

        now = utcnow()
        conn.execute(
            insert(wristbands).values(
                wristband_id=wristband_id,
                event_id=event_id,
                category=category or DEFAULT_CATEGORY,
                status="active",
                notes=[],
                created_at=now,
                updated_at=now,
            )
        )
        return self.get(conn, event_id, wristband_id)

    def history(
        self,
        conn: Connection,
        event_id: str,
        wristband_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[CheckinRecord]:
        """Check-ins ordered by (timestamp, insertion); ``limit`` keeps the most recent ones."""
        query = select(
            checkin_logs.c.id, checkin_logs.c.event_id, checkin_logs.c.wristband_id,
            checkin_logs.c.gate_id, checkin_logs.c.location, checkin_logs.c.timestamp,
            checkin_logs.c.outcome,
        ).where(
            checkin_logs.c.event_id == event_id,
            checkin_logs.c.wristband_id == wristband_id,
        )
        if since is not None:
            query = query.where(checkin_logs.c.timestamp >= since)

        if limit:
            query = query.order_by(checkin_logs.c.timestamp.desc(), checkin_logs.c.id.desc()).limit(limit)
            rows = list(reversed(conn.execute(query).mappings().all()))
        else:
            query = query.order_by(checkin_logs.c.timestamp, checkin_logs.c.id)
            rows = conn.execute(query).mappings().all()

        return [CheckinRecord(**row) for row in rows]

    def active_since(self, conn: Connection, event_id: str, since: datetime) -> List[str]:
        """Wristbands with at least one check-in at or after ``since``."""
        rows = conn.execute(
            select(checkin_logs.c.wristband_id)
            .where(checkin_logs.c.event_id == event_id, checkin_logs.c.timestamp >= since)
            .distinct()
            .order_by(checkin_logs.c.wristband_id)
        ).all()
        return [row[0] for row in rows]

    def block(
        self,
        conn: Connection,
        event_id: str,
        wristband_id: str,
        reason: str,
        fraud_score: int,
        action: AuditAction,
        threshold: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Mark the wristband blocked. Returns False if it already was."""
        wristband = self.get_or_create(conn, event_id, wristband_id)
        if wristband.status == "blocked":
            return False

        now = now or utcnow()
        note: Dict[str, Any] = {
            "timestamp": now.isoformat(),
            "action": action.value,
            "reason": reason,
            "fraud_score": fraud_score,
            "system": "fraud_detection",
        }
        result = conn.execute(
            update(wristbands)
            .where(self._key(event_id, wristband_id), wristbands.c.status == "active")
            .values(
                status="blocked",
                blocked_at=now,
                notes=(wristband.notes or []) + [note],
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            # blocked by a concurrent writer since the read above
            return False
        AuditService.log(
            conn, action, event_id, "wristbands", wristband_id,
            old_values={"status": wristband.status},
            new_values={"status": "blocked", "fraud_score": fraud_score, "threshold": threshold, "reason": reason},
        )
        return True

    def unblock(self, conn: Connection, event_id: str, wristband_id: str, actor: Optional[str] = None) -> Wristband:
        """Operator override lifting a block."""
        wristband = self.get(conn, event_id, wristband_id)
        if not wristband:
            raise WristbandNotFoundError(f"Wristband {wristband_id} not found for event {event_id}")
        if wristband.status != "blocked":
            raise InvalidTransitionError(f"Wristband {wristband_id} is not blocked")

        now = utcnow()
        note = {"timestamp": now.isoformat(), "action": AuditAction.MANUAL_UNBLOCK.value, "actor": actor}
        conn.execute(
            update(wristbands)
            .where(self._key(event_id, wristband_id))
            .values(status="active", blocked_at=None, notes=(wristband.notes or []) + [note], updated_at=now)
        )
        AuditService.log(
            conn, AuditAction.MANUAL_UNBLOCK, event_id, "wristbands", wristband_id,
            old_values={"status": "blocked", "blocked_at": wristband.blocked_at.isoformat() if wristband.blocked_at else None},
            new_values={"status": "active"},
            actor=actor,
        )
        return self.get(conn, event_id, wristband_id)
