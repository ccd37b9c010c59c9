# =======================================================================================
# gatewatch/services/audit_service.py - Audit Trail
# =======================================================================================
from typing import Any, Dict, List, Optional
from sqlalchemy import insert, select
from sqlalchemy.engine import Connection
from ..models.enums import AuditAction
from ..models.tables import audit_log
from ..utils.clock import utcnow

SYSTEM_ACTOR = "system"


class AuditService:
    """Writes one audit entry per automated or operator action."""

    @staticmethod
    def log(
        conn: Connection,
        action: AuditAction,
        event_id: Optional[str],
        table_name: str,
        record_id: Any,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> int:
        result = conn.execute(
            insert(audit_log).values(
                event_id=event_id,
                action=action.value,
                table_name=table_name,
                record_id=str(record_id) if record_id is not None else None,
                old_values=old_values,
                new_values=new_values,
                actor=actor or SYSTEM_ACTOR,
                created_at=utcnow(),
            )
        )
        return result.inserted_primary_key[0]

    @staticmethod
    def list_entries(conn: Connection, event_id: str, limit: int = 200) -> List[Dict[str, Any]]:
        rows = conn.execute(
            select(audit_log)
            .where(audit_log.c.event_id == event_id)
            .order_by(audit_log.c.id.desc())
            .limit(limit)
        ).mappings().all()
        return [dict(row) for row in rows]
