# =======================================================================================
# gatewatch/services/gate_clustering.py - Gate Clustering & Binding Engine
# =======================================================================================
"""
Batch pass over an event's gates.

Each run infers missing gate coordinates from scanner GPS, rescores gate
confidence and promotes probation gates, learns category bindings, and finally
compares every pair of gates to suggest merges for duplicates. The pairwise
phase checks a ``threading.Event`` between pairs and reports the index it
stopped at so a later run can resume from there.
"""
import logging
import threading
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from itertools import combinations, islice
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple
from sqlalchemy import insert, or_, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from ..models.enums import AlertType, DEFAULT_CATEGORY
from ..models.schemas import (
    AdaptiveThresholds, ClusteringResult, DiscoveredGate, Gate, MergeCandidate,
)
from ..models.tables import checkin_logs, gate_bindings, gate_merge_suggestions, gates, wristbands
from ..utils.clock import utcnow
from ..utils.geo import centroid, cluster_key, find_nearest, has_coordinates, haversine_distance
from ..utils.similarity import name_similarity
from .alert_service import AlertService
from .gate_service import GateService

logger = logging.getLogger(__name__)

MAX_GPS_ACCURACY_METERS = 50.0
DISCOVERY_MIN_SPAN = timedelta(minutes=30)
DISCOVERY_BUSY_COUNT = 10
# a discovered cluster this close to an existing gate is that gate
DISCOVERY_MATCH_METERS = 25.0

# (minimum check-ins, confidence)
DISCOVERY_CONFIDENCE_TIERS = ((100, 0.95), (50, 0.85), (20, 0.75), (10, 0.65), (0, 0.50))
# (distance below, confidence)
DISTANCE_CONFIDENCE_TIERS = ((10.0, 0.98), (15.0, 0.95), (25.0, 0.85))
DISTANCE_CONFIDENCE_FLOOR = 0.70


class GpsReading(NamedTuple):
    gate_id: Optional[int]
    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime
    wristband_id: str
    category: str


# ------------------------------------------------------------------
# Pure scoring helpers
# ------------------------------------------------------------------
def gate_confidence(gate: Gate, now: datetime) -> float:
    """Confidence on a 0-100 scale from volume, coordinates and age."""
    score = 50.0

    if gate.checkin_count > 100:
        score += 30
    elif gate.checkin_count > 50:
        score += 20
    elif gate.checkin_count > 10:
        score += 10

    if has_coordinates(gate.latitude, gate.longitude):
        score += 15

    age = now - gate.created_at
    if age > timedelta(hours=24):
        score += 10
    elif age > timedelta(hours=6):
        score += 5

    if gate.auto_created and gate.checkin_count < 5:
        score -= 20

    return max(0.0, min(100.0, score))


def should_promote(gate: Gate, confidence_score: float, thresholds: AdaptiveThresholds) -> bool:
    return (
        gate.status == "probation"
        and gate.checkin_count >= thresholds.promotion_sample_size
        and confidence_score / 100 >= thresholds.confidence_threshold
    )


def gate_distance(a: Gate, b: Gate) -> Optional[float]:
    """Haversine meters, or None when either gate has no coordinates."""
    if not (has_coordinates(a.latitude, a.longitude) and has_coordinates(b.latitude, b.longitude)):
        return None
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def distance_confidence(distance: float) -> float:
    for limit, confidence in DISTANCE_CONFIDENCE_TIERS:
        if distance < limit:
            return confidence
    return DISTANCE_CONFIDENCE_FLOOR


def canonical_pair(a: Gate, b: Gate) -> Tuple[Gate, Gate]:
    """(primary, secondary): the earlier-created gate survives, ties go to the lower id."""
    if (a.created_at, a.id) <= (b.created_at, b.id):
        return a, b
    return b, a


def compare_gates(a: Gate, b: Gate, thresholds: AdaptiveThresholds) -> Optional[MergeCandidate]:
    """Merge candidate for a likely-duplicate pair, otherwise None."""
    similarity = name_similarity(a.name, b.name)
    distance = gate_distance(a, b)

    by_name = similarity > thresholds.name_similarity_threshold
    by_distance = distance is not None and distance < thresholds.duplicate_distance_meters
    if not (by_name or by_distance):
        return None

    reasons = []
    confidence = 0.0
    if by_name:
        confidence = similarity
        reasons.append(f"name similarity {similarity:.2f}")
    if by_distance:
        confidence = max(confidence, distance_confidence(distance))
        reasons.append(f"{distance:.1f} m apart")

    primary, secondary = canonical_pair(a, b)
    return MergeCandidate(
        primary_gate_id=primary.id,
        secondary_gate_id=secondary.id,
        name_similarity=round(similarity, 4),
        distance_meters=round(distance, 2) if distance is not None else None,
        confidence_score=round(confidence, 4),
        reasoning="; ".join(reasons),
    )


def find_duplicates(
    gate_list: Sequence[Gate],
    thresholds: AdaptiveThresholds,
    cancel_event: Optional[threading.Event] = None,
    start_index: int = 0,
) -> Tuple[List[MergeCandidate], int, int, bool]:
    """
    Compare every unordered pair of gates, starting at pair ``start_index``.

    Returns (candidates, pairs_checked, next_pair_index, cancelled). Pairs are
    enumerated in a fixed order (gates sorted by id) so the index is a stable
    checkpoint across runs.
    """
    ordered = sorted(gate_list, key=lambda g: g.id)
    candidates: List[MergeCandidate] = []
    index = start_index
    checked = 0

    for a, b in islice(combinations(ordered, 2), start_index, None):
        if cancel_event is not None and cancel_event.is_set():
            return candidates, checked, index, True
        candidate = compare_gates(a, b, thresholds)
        if candidate:
            candidates.append(candidate)
        index += 1
        checked += 1

    return candidates, checked, index, False


def total_pairs(gate_count: int) -> int:
    return gate_count * (gate_count - 1) // 2


def discovery_confidence(count: int) -> float:
    for minimum, confidence in DISCOVERY_CONFIDENCE_TIERS:
        if count >= minimum:
            return confidence
    return DISCOVERY_CONFIDENCE_TIERS[-1][1]


def suggest_gate_name(category: str, count: int) -> str:
    if count >= 100:
        return f"Main {category} Gate"
    if count >= 50:
        return f"{category} Entrance"
    return f"{category} Access Point"


def cluster_readings(readings: Iterable[GpsReading], min_checkins: int) -> List[DiscoveredGate]:
    """Group GPS readings into ~11 m cells and keep the ones that look like a real gate."""
    cells: Dict[Tuple[float, float], List[GpsReading]] = defaultdict(list)
    for reading in readings:
        cells[cluster_key(reading.latitude, reading.longitude)].append(reading)

    discovered: List[DiscoveredGate] = []
    for (lat, lon), members in cells.items():
        count = len(members)
        if count < min_checkins:
            continue
        first_seen = min(r.timestamp for r in members)
        last_seen = max(r.timestamp for r in members)
        if last_seen - first_seen < DISCOVERY_MIN_SPAN and count < DISCOVERY_BUSY_COUNT:
            continue

        distribution = Counter(r.category for r in members)
        # ties go to the alphabetically first category
        dominant = min(distribution, key=lambda c: (-distribution[c], c))
        center = centroid([(r.latitude, r.longitude) for r in members])

        discovered.append(DiscoveredGate(
            cluster_id=f"{lat:.4f},{lon:.4f}",
            suggested_name=suggest_gate_name(dominant, count),
            latitude=round(center[0], 6),
            longitude=round(center[1], 6),
            checkin_count=count,
            unique_wristbands=len({r.wristband_id for r in members}),
            dominant_category=dominant,
            category_distribution=dict(distribution),
            first_seen=first_seen,
            last_seen=last_seen,
            avg_accuracy=round(sum(r.accuracy for r in members) / count, 2),
            confidence_score=discovery_confidence(count),
        ))

    discovered.sort(key=lambda d: (-d.checkin_count, d.cluster_id))
    return discovered


def match_existing_gates(discovered: List[DiscoveredGate], known: Sequence[Gate]) -> List[DiscoveredGate]:
    """Tag each discovered cluster with the nearest known gate inside ``DISCOVERY_MATCH_METERS``."""
    for cluster in discovered:
        match = find_nearest(
            (cluster.latitude, cluster.longitude),
            known,
            lambda g: (g.latitude, g.longitude) if has_coordinates(g.latitude, g.longitude) else None,
        )
        if match is None:
            continue
        gate, distance = match
        if distance <= DISCOVERY_MATCH_METERS:
            cluster.matched_gate_id = gate.id
            cluster.matched_gate_distance_meters = round(distance, 1)
    return discovered


def learned_binding_status(confidence: float, sample_count: int, thresholds: AdaptiveThresholds) -> str:
    if confidence < thresholds.confidence_threshold:
        return "unbound"
    if sample_count >= thresholds.promotion_sample_size:
        return "enforced"
    return "probation"


# ------------------------------------------------------------------
# Database-backed sweep
# ------------------------------------------------------------------
class GateClusteringService:
    """Runs the clustering sweep for one event."""

    def __init__(self, gate_service: Optional[GateService] = None, alert_service: Optional[AlertService] = None):
        self.alert_service = alert_service or AlertService()
        self.gate_service = gate_service or GateService(self.alert_service)

    @staticmethod
    def gps_readings(conn: Connection, event_id: str) -> List[GpsReading]:
        """Accurate GPS readings of successful check-ins, with the wristband's category."""
        rows = conn.execute(
            select(
                checkin_logs.c.gate_id, checkin_logs.c.app_lat, checkin_logs.c.app_lon,
                checkin_logs.c.app_accuracy, checkin_logs.c.timestamp, checkin_logs.c.wristband_id,
                wristbands.c.category,
            )
            .select_from(
                checkin_logs.outerjoin(
                    wristbands,
                    (wristbands.c.wristband_id == checkin_logs.c.wristband_id)
                    & (wristbands.c.event_id == checkin_logs.c.event_id),
                )
            )
            .where(
                checkin_logs.c.event_id == event_id,
                checkin_logs.c.outcome == "success",
                checkin_logs.c.app_lat.is_not(None),
                checkin_logs.c.app_lon.is_not(None),
            )
            .order_by(checkin_logs.c.timestamp, checkin_logs.c.id)
        ).all()

        readings = []
        for row in rows:
            accuracy = row.app_accuracy if row.app_accuracy is not None else MAX_GPS_ACCURACY_METERS
            if accuracy > MAX_GPS_ACCURACY_METERS:
                continue
            readings.append(GpsReading(
                gate_id=row.gate_id,
                latitude=row.app_lat,
                longitude=row.app_lon,
                accuracy=accuracy,
                timestamp=row.timestamp,
                wristband_id=row.wristband_id,
                category=row.category or DEFAULT_CATEGORY,
            ))
        return readings

    def discover_physical_gates(
        self, conn: Connection, event_id: str, thresholds: AdaptiveThresholds
    ) -> List[DiscoveredGate]:
        discovered = cluster_readings(self.gps_readings(conn, event_id), thresholds.min_checkins_for_gate)
        known = [g for g in self.gate_service.list_gates(conn, event_id) if g.status != "rejected"]
        return match_existing_gates(discovered, known)

    # ------------------------------------------------------------------
    # Sweep phases
    # ------------------------------------------------------------------
    def infer_coordinates(
        self, conn: Connection, gate_list: Sequence[Gate], readings: Sequence[GpsReading], min_checkins: int
    ) -> List[int]:
        by_gate: Dict[int, List[Tuple[float, float]]] = defaultdict(list)
        for reading in readings:
            if reading.gate_id is not None:
                by_gate[reading.gate_id].append((reading.latitude, reading.longitude))

        inferred = []
        for gate in gate_list:
            if gate.latitude is not None and gate.longitude is not None:
                continue
            points = by_gate.get(gate.id, [])
            if len(points) < min_checkins:
                continue
            lat, lon = centroid(points)
            conn.execute(
                update(gates)
                .where(gates.c.id == gate.id)
                .values(latitude=round(lat, 6), longitude=round(lon, 6), updated_at=utcnow())
            )
            gate.latitude, gate.longitude = round(lat, 6), round(lon, 6)
            inferred.append(gate.id)
            logger.debug("[%s] gate %s located at %.6f,%.6f from %d readings", gate.event_id, gate.id, lat, lon, len(points))
        return inferred

    def score_gates(
        self, conn: Connection, gate_list: Sequence[Gate], thresholds: AdaptiveThresholds, now: datetime
    ) -> List[int]:
        """Store fresh confidence scores and promote qualifying probation gates."""
        promoted = []
        for gate in gate_list:
            confidence = gate_confidence(gate, now)
            if should_promote(gate, confidence, thresholds):
                self.gate_service.promote(conn, gate, confidence)
                gate.status = "approved"
                promoted.append(gate.id)
            elif confidence != gate.confidence_score:
                conn.execute(update(gates).where(gates.c.id == gate.id).values(confidence_score=confidence))
            gate.confidence_score = confidence
        return promoted

    def learn_bindings(self, conn: Connection, event_id: str, thresholds: AdaptiveThresholds) -> int:
        """Bind each gate to the dominant category of its successful check-ins."""
        rows = conn.execute(
            select(checkin_logs.c.gate_id, wristbands.c.category)
            .select_from(
                checkin_logs.join(
                    wristbands,
                    (wristbands.c.wristband_id == checkin_logs.c.wristband_id)
                    & (wristbands.c.event_id == checkin_logs.c.event_id),
                )
            )
            .where(
                checkin_logs.c.event_id == event_id,
                checkin_logs.c.outcome == "success",
                checkin_logs.c.gate_id.is_not(None),
            )
        ).all()

        per_gate: Dict[int, Counter] = defaultdict(Counter)
        for gate_id, category in rows:
            per_gate[gate_id][category] += 1

        learned = 0
        now = utcnow()
        for gate_id, distribution in per_gate.items():
            total = sum(distribution.values())
            if total < thresholds.min_checkins_for_gate:
                continue
            category = min(distribution, key=lambda c: (-distribution[c], c))
            confidence = round(distribution[category] / total, 4)
            status = learned_binding_status(confidence, total, thresholds)

            existing = self.gate_service.find_binding(conn, gate_id, category)
            if existing is None:
                conn.execute(
                    insert(gate_bindings).values(
                        gate_id=gate_id, event_id=event_id, category=category, status=status,
                        confidence=confidence, sample_count=total, violation_count=0,
                        source="learned", bound_at=now, updated_at=now,
                    )
                )
            elif existing.source == "operator" or existing.status == "rejected":
                continue
            else:
                conn.execute(
                    update(gate_bindings)
                    .where(gate_bindings.c.id == existing.id)
                    .values(status=status, confidence=confidence, sample_count=total, updated_at=now)
                )
            learned += 1
        return learned

    @staticmethod
    def _suggestion_exists(conn: Connection, event_id: str, a: int, b: int) -> bool:
        row = conn.execute(
            select(gate_merge_suggestions.c.id).where(
                gate_merge_suggestions.c.event_id == event_id,
                or_(
                    (gate_merge_suggestions.c.primary_gate_id == a) & (gate_merge_suggestions.c.secondary_gate_id == b),
                    (gate_merge_suggestions.c.primary_gate_id == b) & (gate_merge_suggestions.c.secondary_gate_id == a),
                ),
            )
        ).first()
        return row is not None

    def save_suggestions(self, conn: Connection, event_id: str, candidates: Sequence[MergeCandidate]) -> int:
        created = 0
        for candidate in candidates:
            if self._suggestion_exists(conn, event_id, candidate.primary_gate_id, candidate.secondary_gate_id):
                continue
            try:
                conn.execute(
                    insert(gate_merge_suggestions).values(
                        event_id=event_id,
                        primary_gate_id=candidate.primary_gate_id,
                        secondary_gate_id=candidate.secondary_gate_id,
                        confidence_score=candidate.confidence_score,
                        name_similarity=candidate.name_similarity,
                        reasoning=candidate.reasoning,
                        distance_meters=candidate.distance_meters,
                        status="pending",
                        created_at=utcnow(),
                    )
                )
            except IntegrityError:
                logger.debug("[%s] suggestion %s/%s already stored", event_id, candidate.primary_gate_id, candidate.secondary_gate_id)
                continue

            created += 1
            self.alert_service.emit(
                conn, event_id, AlertType.GATE_MERGE_SUGGESTED,
                "medium" if candidate.confidence_score >= 0.9 else "low",
                f"Gates {candidate.primary_gate_id} and {candidate.secondary_gate_id} look like duplicates",
                candidate.model_dump(),
            )
        return created

    def run(
        self,
        conn: Connection,
        event_id: str,
        thresholds: AdaptiveThresholds,
        cancel_event: Optional[threading.Event] = None,
        start_index: int = 0,
        now: Optional[datetime] = None,
    ) -> ClusteringResult:
        now = now or utcnow()
        gate_list = self.gate_service.list_gates(conn, event_id)
        result = ClusteringResult(event_id=event_id, total_pairs=total_pairs(len(gate_list)))

        readings = self.gps_readings(conn, event_id)
        result.coordinates_inferred = self.infer_coordinates(
            conn, gate_list, readings, thresholds.min_checkins_for_gate
        )
        result.gates_promoted = self.score_gates(conn, gate_list, thresholds, now)
        result.gates_scored = len(gate_list)
        result.bindings_learned = self.learn_bindings(conn, event_id, thresholds)

        candidates, checked, next_index, cancelled = find_duplicates(
            gate_list, thresholds, cancel_event, start_index
        )
        result.suggestions_created = self.save_suggestions(conn, event_id, candidates)
        result.pairs_checked = checked
        result.next_pair_index = next_index
        result.cancelled = cancelled

        logger.info(
            "[%s] clustering: %d gates, %d promoted, %d suggestions, %d/%d pairs%s",
            event_id, result.gates_scored, len(result.gates_promoted), result.suggestions_created,
            next_index, result.total_pairs, " (cancelled)" if cancelled else "",
        )
        return result
