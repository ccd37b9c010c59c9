# =======================================================================================
# gatewatch/services/threshold_service.py - Per-Event Adaptive Thresholds
# =======================================================================================
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection
from ..models.enums import AuditAction
from ..models.schemas import AdaptiveThresholds, ThresholdsUpdate
from ..models.tables import adaptive_thresholds
from ..utils.clock import utcnow
from .audit_service import AuditService


class ThresholdService:
    """Reads and updates the detection thresholds configured for an event."""

    def get(self, conn: Connection, event_id: str) -> AdaptiveThresholds:
        """Stored thresholds for the event, or the configured defaults."""
        row = conn.execute(
            select(adaptive_thresholds).where(adaptive_thresholds.c.event_id == event_id)
        ).mappings().first()
        if not row:
            return AdaptiveThresholds()

        values = dict(row)
        values.pop("event_id")
        values.pop("updated_at")
        return AdaptiveThresholds(**values)

    def update(self, conn: Connection, event_id: str, changes: ThresholdsUpdate, actor: str = None) -> AdaptiveThresholds:
        current = self.get(conn, event_id)
        patch = changes.model_dump(exclude_none=True)
        merged = AdaptiveThresholds(**{**current.model_dump(), **patch})

        exists = conn.execute(
            select(adaptive_thresholds.c.event_id).where(adaptive_thresholds.c.event_id == event_id)
        ).first()
        if exists:
            conn.execute(
                update(adaptive_thresholds)
                .where(adaptive_thresholds.c.event_id == event_id)
                .values(**merged.model_dump(), updated_at=utcnow())
            )
        else:
            conn.execute(
                insert(adaptive_thresholds).values(
                    event_id=event_id, **merged.model_dump(), updated_at=utcnow()
                )
            )

        AuditService.log(
            conn, AuditAction.THRESHOLDS_UPDATED, event_id, "adaptive_thresholds", event_id,
            old_values=current.model_dump(), new_values=merged.model_dump(), actor=actor,
        )
        return merged
