# =======================================================================================
# gatewatch/services/gate_service.py - Gate Lifecycle, Aliases and Bindings
# =======================================================================================
import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from ..models.enums import AlertType, AuditAction, BindingStatus
from ..models.schemas import Gate, GateBinding, GateMergeSuggestion, SystemAlert
from ..models.tables import checkin_logs, gate_aliases, gate_bindings, gate_merge_suggestions, gates
from ..utils.clock import utcnow
from ..utils.exceptions import (
    GateNotFoundError, InconsistentStateError, InvalidTransitionError,
    SuggestionNotFoundError, ValidationError,
)
from .alert_service import AlertService
from .audit_service import AuditService

logger = logging.getLogger(__name__)


class GateService:
    """Gate lookups, operator lifecycle actions, merges and category bindings."""

    def __init__(self, alert_service: Optional[AlertService] = None):
        self.alert_service = alert_service or AlertService()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find(self, conn: Connection, gate_id: int) -> Optional[Gate]:
        row = conn.execute(select(gates).where(gates.c.id == gate_id)).mappings().first()
        return Gate(**row) if row else None

    def get(self, conn: Connection, gate_id: int) -> Gate:
        gate = self.find(conn, gate_id)
        if not gate:
            raise GateNotFoundError(f"Gate {gate_id} not found")
        return gate

    def find_by_name(self, conn: Connection, event_id: str, name: str) -> Optional[Gate]:
        row = conn.execute(
            select(gates).where(gates.c.event_id == event_id, gates.c.name == name)
        ).mappings().first()
        return Gate(**row) if row else None

    def list_gates(self, conn: Connection, event_id: str, status: Optional[str] = None) -> List[Gate]:
        query = select(gates).where(gates.c.event_id == event_id)
        if status:
            query = query.where(gates.c.status == status)
        rows = conn.execute(query.order_by(gates.c.id)).mappings().all()
        return [Gate(**row) for row in rows]

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------
    @staticmethod
    def _alias_by_name(conn: Connection, event_id: str, name: str):
        return conn.execute(
            select(gate_aliases).where(gate_aliases.c.event_id == event_id, gate_aliases.c.alias_name == name)
        ).mappings().first()

    @staticmethod
    def _alias_by_former_id(conn: Connection, gate_id: int):
        return conn.execute(
            select(gate_aliases)
            .where(gate_aliases.c.former_gate_id == gate_id)
            .order_by(gate_aliases.c.id.desc())
        ).mappings().first()

    def _follow_alias(self, conn: Connection, alias) -> Optional[Gate]:
        """Target of an alias; None for a rejected location string."""
        if alias["gate_id"] is None:
            return None
        gate = self.find(conn, alias["gate_id"])
        if gate is None:
            raise InconsistentStateError(
                f"Alias '{alias['alias_name']}' points at missing gate {alias['gate_id']}"
            )
        return gate

    def _set_alias(
        self, conn: Connection, event_id: str, name: str,
        gate_id: Optional[int], former_gate_id: Optional[int] = None,
    ):
        existing = self._alias_by_name(conn, event_id, name)
        if existing:
            conn.execute(
                update(gate_aliases)
                .where(gate_aliases.c.id == existing["id"])
                .values(gate_id=gate_id, former_gate_id=former_gate_id or existing["former_gate_id"])
            )
        else:
            conn.execute(
                insert(gate_aliases).values(
                    event_id=event_id, alias_name=name, gate_id=gate_id,
                    former_gate_id=former_gate_id, created_at=utcnow(),
                )
            )

    @staticmethod
    def _drop_alias(conn: Connection, event_id: str, name: str):
        conn.execute(
            delete(gate_aliases).where(gate_aliases.c.event_id == event_id, gate_aliases.c.alias_name == name)
        )

    # ------------------------------------------------------------------
    # Check-in resolution
    # ------------------------------------------------------------------
    def resolve_gate(
        self, conn: Connection, event_id: str, gate_id: Optional[int] = None, gate_name: Optional[str] = None
    ) -> Optional[Gate]:
        """
        Gate a scan belongs to.

        A known id wins; a merged-away id is followed through its alias. A name is
        looked up directly, then through the alias table, and otherwise auto-creates
        a probation gate. Rejected names resolve to no gate.
        """
        try:
            if gate_id is not None:
                gate = self.find(conn, gate_id)
                if gate:
                    if gate.event_id != event_id:
                        raise ValidationError(f"Gate {gate_id} belongs to another event")
                    return gate
                alias = self._alias_by_former_id(conn, gate_id)
                if alias is None or alias["event_id"] != event_id:
                    raise ValidationError(f"Unknown gate {gate_id}")
                return self._follow_alias(conn, alias)

            if not gate_name:
                return None

            gate = self.find_by_name(conn, event_id, gate_name)
            if gate:
                return gate
            alias = self._alias_by_name(conn, event_id, gate_name)
            if alias:
                return self._follow_alias(conn, alias)
        except InconsistentStateError as e:
            raise ValidationError(str(e)) from e

        return self._auto_create(conn, event_id, gate_name)

    def _auto_create(self, conn: Connection, event_id: str, name: str) -> Gate:
        try:
            gate = self._insert_gate(conn, event_id, name, status="probation", auto_created=True)
        except IntegrityError:
            # another scanner created it first
            gate = self.find_by_name(conn, event_id, name)
            if gate is None:
                raise
            return gate

        AuditService.log(
            conn, AuditAction.GATE_AUTO_CREATED, event_id, "gates", gate.id,
            new_values={"name": name, "status": "probation"},
        )
        logger.info("[%s] auto-created gate %s '%s'", event_id, gate.id, name)
        return gate

    def _insert_gate(
        self, conn: Connection, event_id: str, name: str, status: str, auto_created: bool,
        latitude: Optional[float] = None, longitude: Optional[float] = None,
    ) -> Gate:
        now = utcnow()
        result = conn.execute(
            insert(gates).values(
                event_id=event_id,
                name=name,
                status=status,
                latitude=latitude,
                longitude=longitude,
                auto_created=auto_created,
                confidence_score=50.0,
                checkin_count=0,
                created_at=now,
                approved_at=now if status == "approved" else None,
                updated_at=now,
            )
        )
        return self.get(conn, result.inserted_primary_key[0])

    def record_scan(self, conn: Connection, gate: Gate, outcome: str) -> Gate:
        """Count a successful scan; an approved gate goes live on its first one."""
        if outcome != "success":
            return gate

        values = {"checkin_count": gates.c.checkin_count + 1, "updated_at": utcnow()}
        if gate.status == "approved":
            values["status"] = "active"
        conn.execute(update(gates).where(gates.c.id == gate.id).values(**values))
        return self.get(conn, gate.id)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------
    def create_gate(
        self, conn: Connection, event_id: str, name: str,
        latitude: Optional[float] = None, longitude: Optional[float] = None, actor: Optional[str] = None,
    ) -> Gate:
        """Operator-created gates skip probation."""
        if self.find_by_name(conn, event_id, name):
            raise InvalidTransitionError(f"Gate '{name}' already exists")

        self._drop_alias(conn, event_id, name)
        gate = self._insert_gate(
            conn, event_id, name, status="approved", auto_created=False, latitude=latitude, longitude=longitude,
        )
        AuditService.log(
            conn, AuditAction.GATE_CREATED, event_id, "gates", gate.id,
            new_values={"name": name, "status": "approved", "latitude": latitude, "longitude": longitude},
            actor=actor,
        )
        return gate

    def approve(self, conn: Connection, gate_id: int, actor: Optional[str] = None) -> Gate:
        gate = self.get(conn, gate_id)
        if gate.status != "probation":
            raise InvalidTransitionError(f"Gate {gate_id} is {gate.status}, only probation gates can be approved")

        now = utcnow()
        conn.execute(
            update(gates).where(gates.c.id == gate_id).values(status="approved", approved_at=now, updated_at=now)
        )
        AuditService.log(
            conn, AuditAction.GATE_APPROVED, gate.event_id, "gates", gate_id,
            old_values={"status": gate.status}, new_values={"status": "approved"}, actor=actor,
        )
        return self.get(conn, gate_id)

    def promote(self, conn: Connection, gate: Gate, confidence_score: float) -> Gate:
        """Automatic probation -> approved transition."""
        now = utcnow()
        conn.execute(
            update(gates)
            .where(gates.c.id == gate.id, gates.c.status == "probation")
            .values(status="approved", approved_at=now, confidence_score=confidence_score, updated_at=now)
        )
        AuditService.log(
            conn, AuditAction.GATE_PROMOTED, gate.event_id, "gates", gate.id,
            old_values={"status": gate.status},
            new_values={"status": "approved", "confidence_score": confidence_score, "checkin_count": gate.checkin_count},
        )
        self.alert_service.emit(
            conn, gate.event_id, AlertType.GATE_PROMOTED, "low",
            f"Gate '{gate.name}' promoted to approved",
            {"gate_id": gate.id, "confidence_score": confidence_score, "checkin_count": gate.checkin_count},
        )
        return self.get(conn, gate.id)

    def reject(self, conn: Connection, gate_id: int, actor: Optional[str] = None) -> Gate:
        """Remove a probation gate and remember its name as rejected."""
        gate = self.get(conn, gate_id)
        if gate.status != "probation":
            raise InvalidTransitionError(f"Gate {gate_id} is {gate.status}, only probation gates can be rejected")

        conn.execute(update(checkin_logs).where(checkin_logs.c.gate_id == gate_id).values(gate_id=None))
        conn.execute(update(gate_aliases).where(gate_aliases.c.gate_id == gate_id).values(gate_id=None))
        conn.execute(delete(gate_bindings).where(gate_bindings.c.gate_id == gate_id))
        conn.execute(
            delete(gate_merge_suggestions).where(
                gate_merge_suggestions.c.status == "pending",
                or_(
                    gate_merge_suggestions.c.primary_gate_id == gate_id,
                    gate_merge_suggestions.c.secondary_gate_id == gate_id,
                ),
            )
        )
        conn.execute(delete(gates).where(gates.c.id == gate_id))
        self._set_alias(conn, gate.event_id, gate.name, gate_id=None, former_gate_id=gate_id)

        AuditService.log(
            conn, AuditAction.GATE_REJECTED, gate.event_id, "gates", gate_id,
            old_values={"name": gate.name, "status": gate.status, "checkin_count": gate.checkin_count},
            new_values={"status": "rejected"},
            actor=actor,
        )
        gate.status = "rejected"
        return gate

    def rename(self, conn: Connection, gate_id: int, name: str, actor: Optional[str] = None) -> Gate:
        gate = self.get(conn, gate_id)
        if name == gate.name:
            return gate
        if self.find_by_name(conn, gate.event_id, name):
            raise InvalidTransitionError(f"Gate '{name}' already exists")

        now = utcnow()
        conn.execute(update(gates).where(gates.c.id == gate_id).values(name=name, updated_at=now))
        conn.execute(update(checkin_logs).where(checkin_logs.c.gate_id == gate_id).values(location=name))
        # scanners still typing the old name keep landing here
        self._drop_alias(conn, gate.event_id, name)
        self._set_alias(conn, gate.event_id, gate.name, gate_id=gate_id)

        AuditService.log(
            conn, AuditAction.GATE_RENAMED, gate.event_id, "gates", gate_id,
            old_values={"name": gate.name}, new_values={"name": name}, actor=actor,
        )
        return self.get(conn, gate_id)

    def merge(
        self, conn: Connection, primary_gate_id: int, secondary_gate_id: int,
        actor: Optional[str] = None, suggestion_id: Optional[int] = None,
    ) -> Gate:
        """Fold the secondary gate into the primary one."""
        if primary_gate_id == secondary_gate_id:
            raise InvalidTransitionError("Cannot merge a gate into itself")
        primary = self.get(conn, primary_gate_id)
        secondary = self.get(conn, secondary_gate_id)
        if primary.event_id != secondary.event_id:
            raise InvalidTransitionError("Gates belong to different events")

        event_id = primary.event_id
        now = utcnow()

        moved = conn.execute(
            update(checkin_logs)
            .where(checkin_logs.c.gate_id == secondary.id)
            .values(gate_id=primary.id, location=primary.name)
        ).rowcount

        conn.execute(update(gate_aliases).where(gate_aliases.c.gate_id == secondary.id).values(gate_id=primary.id))
        self._set_alias(conn, event_id, secondary.name, gate_id=primary.id, former_gate_id=secondary.id)

        self._move_bindings(conn, secondary.id, primary.id)

        values = {"checkin_count": primary.checkin_count + secondary.checkin_count, "updated_at": now}
        if primary.latitude is None and secondary.latitude is not None:
            values.update(latitude=secondary.latitude, longitude=secondary.longitude)
        conn.execute(update(gates).where(gates.c.id == primary.id).values(**values))

        pair = or_(
            (gate_merge_suggestions.c.primary_gate_id == primary.id)
            & (gate_merge_suggestions.c.secondary_gate_id == secondary.id),
            (gate_merge_suggestions.c.primary_gate_id == secondary.id)
            & (gate_merge_suggestions.c.secondary_gate_id == primary.id),
        )
        # reviewed suggestions keep their verdict
        conn.execute(
            update(gate_merge_suggestions)
            .where(pair, gate_merge_suggestions.c.status == "pending")
            .values(status="merged", reviewed_at=now)
        )
        # other pending suggestions about the secondary gate are moot now
        conn.execute(
            delete(gate_merge_suggestions).where(
                gate_merge_suggestions.c.status == "pending",
                or_(
                    gate_merge_suggestions.c.primary_gate_id == secondary.id,
                    gate_merge_suggestions.c.secondary_gate_id == secondary.id,
                ),
            )
        )
        conn.execute(delete(gates).where(gates.c.id == secondary.id))

        AuditService.log(
            conn, AuditAction.GATE_MERGED, event_id, "gates", primary.id,
            old_values={"secondary_gate_id": secondary.id, "secondary_name": secondary.name},
            new_values={"primary_gate_id": primary.id, "checkins_moved": moved, "suggestion_id": suggestion_id},
            actor=actor,
        )
        logger.info("[%s] merged gate %s into %s (%s check-ins)", event_id, secondary.id, primary.id, moved)
        return self.get(conn, primary.id)

    @staticmethod
    def _move_bindings(conn: Connection, from_gate_id: int, to_gate_id: int):
        taken = {
            row[0] for row in conn.execute(
                select(gate_bindings.c.category).where(gate_bindings.c.gate_id == to_gate_id)
            ).all()
        }
        rows = conn.execute(
            select(gate_bindings.c.id, gate_bindings.c.category).where(gate_bindings.c.gate_id == from_gate_id)
        ).all()
        for binding_id, category in rows:
            if category in taken:
                conn.execute(delete(gate_bindings).where(gate_bindings.c.id == binding_id))
            else:
                conn.execute(update(gate_bindings).where(gate_bindings.c.id == binding_id).values(gate_id=to_gate_id))

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------
    def list_bindings(self, conn: Connection, gate_id: int) -> List[GateBinding]:
        rows = conn.execute(
            select(gate_bindings).where(gate_bindings.c.gate_id == gate_id).order_by(gate_bindings.c.category)
        ).mappings().all()
        return [GateBinding(**row) for row in rows]

    def find_binding(self, conn: Connection, gate_id: int, category: str) -> Optional[GateBinding]:
        row = conn.execute(
            select(gate_bindings).where(gate_bindings.c.gate_id == gate_id, gate_bindings.c.category == category)
        ).mappings().first()
        return GateBinding(**row) if row else None

    def set_binding(
        self, conn: Connection, gate_id: int, category: str, status: BindingStatus, actor: Optional[str] = None
    ) -> GateBinding:
        """Operator binding; learning never overwrites it."""
        gate = self.get(conn, gate_id)
        existing = self.find_binding(conn, gate_id, category)
        now = utcnow()

        if existing:
            conn.execute(
                update(gate_bindings)
                .where(gate_bindings.c.id == existing.id)
                .values(status=status, source="operator", updated_at=now)
            )
        else:
            conn.execute(
                insert(gate_bindings).values(
                    gate_id=gate_id, event_id=gate.event_id, category=category, status=status,
                    confidence=1.0, sample_count=0, violation_count=0, source="operator",
                    bound_at=now, updated_at=now,
                )
            )

        AuditService.log(
            conn, AuditAction.BINDING_SET, gate.event_id, "gate_bindings", gate_id,
            old_values={"category": category, "status": existing.status} if existing else None,
            new_values={"category": category, "status": status},
            actor=actor,
        )
        return self.find_binding(conn, gate_id, category)

    def enforce_binding(
        self, conn: Connection, gate_id: int, event_id: str, category: str, at: Optional[datetime] = None
    ) -> Optional[SystemAlert]:
        """Record a policy violation when the category is not allowed at an enforced gate."""
        enforced = [b for b in self.list_bindings(conn, gate_id) if b.status == "enforced"]
        if not enforced or category in {b.category for b in enforced}:
            return None

        at = at or utcnow()
        conn.execute(
            update(gate_bindings)
            .where(gate_bindings.c.id.in_([b.id for b in enforced]))
            .values(violation_count=gate_bindings.c.violation_count + 1, last_violation_at=at, updated_at=utcnow())
        )
        return self.alert_service.emit(
            conn, event_id, AlertType.POLICY_VIOLATION, "medium",
            f"Category '{category}' checked in at gate {gate_id} bound to {', '.join(sorted(b.category for b in enforced))}",
            {
                "gate_id": gate_id,
                "category": category,
                "allowed_categories": sorted(b.category for b in enforced),
            },
        )

    # ------------------------------------------------------------------
    # Merge suggestions
    # ------------------------------------------------------------------
    def list_suggestions(
        self, conn: Connection, event_id: str, status: Optional[str] = "pending"
    ) -> List[GateMergeSuggestion]:
        query = select(gate_merge_suggestions).where(gate_merge_suggestions.c.event_id == event_id)
        if status:
            query = query.where(gate_merge_suggestions.c.status == status)
        rows = conn.execute(
            query.order_by(gate_merge_suggestions.c.confidence_score.desc(), gate_merge_suggestions.c.id)
        ).mappings().all()
        return [GateMergeSuggestion(**row) for row in rows]

    def get_suggestion(self, conn: Connection, suggestion_id: int) -> GateMergeSuggestion:
        row = conn.execute(
            select(gate_merge_suggestions).where(gate_merge_suggestions.c.id == suggestion_id)
        ).mappings().first()
        if not row:
            raise SuggestionNotFoundError(f"Merge suggestion {suggestion_id} not found")
        return GateMergeSuggestion(**row)

    def approve_suggestion(self, conn: Connection, suggestion_id: int, actor: Optional[str] = None) -> Gate:
        suggestion = self.get_suggestion(conn, suggestion_id)
        if suggestion.status != "pending":
            raise InvalidTransitionError(f"Merge suggestion {suggestion_id} is already {suggestion.status}")
        return self.merge(
            conn, suggestion.primary_gate_id, suggestion.secondary_gate_id,
            actor=actor, suggestion_id=suggestion_id,
        )

    def reject_suggestion(
        self, conn: Connection, suggestion_id: int, actor: Optional[str] = None
    ) -> GateMergeSuggestion:
        suggestion = self.get_suggestion(conn, suggestion_id)
        if suggestion.status != "pending":
            raise InvalidTransitionError(f"Merge suggestion {suggestion_id} is already {suggestion.status}")

        conn.execute(
            update(gate_merge_suggestions)
            .where(gate_merge_suggestions.c.id == suggestion_id)
            .values(status="rejected", reviewed_at=utcnow())
        )
        AuditService.log(
            conn, AuditAction.SUGGESTION_REJECTED, suggestion.event_id, "gate_merge_suggestions", suggestion_id,
            old_values={"status": "pending"}, new_values={"status": "rejected"}, actor=actor,
        )
        return self.get_suggestion(conn, suggestion_id)
