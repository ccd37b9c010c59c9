"""Tests for gate scoring, duplicate detection, discovery and binding learning."""
import threading
from datetime import timedelta

import pytest
from sqlalchemy import insert, select

from gatewatch.models.schemas import AdaptiveThresholds
from gatewatch.models.tables import audit_log, gate_merge_suggestions, gates, system_alerts
from gatewatch.services.gate_clustering import (
    GateClusteringService, GpsReading, canonical_pair, cluster_readings, compare_gates,
    discovery_confidence, distance_confidence, find_duplicates, gate_confidence,
    learned_binding_status, should_promote, suggest_gate_name, total_pairs,
)
from gatewatch.services.gate_service import GateService
from gatewatch.utils.clock import utcnow

from .factories import BASE_TIME, EVENT_ID, add_checkin, add_gate, add_wristband, make_gate_model


class StopAfter(threading.Event):
    """Event that reports itself set after ``n`` checks."""

    def __init__(self, n):
        super().__init__()
        self.remaining = n

    def is_set(self):
        self.remaining -= 1
        return self.remaining < 0


@pytest.fixture
def clustering(alert_service):
    return GateClusteringService(GateService(alert_service), alert_service)


# ---------- confidence ----------

def test_confidence_of_busy_located_old_gate_is_clamped():
    gate = make_gate_model(1, "Main", 1.0, 1.0, checkin_count=150)
    assert gate_confidence(gate, BASE_TIME + timedelta(days=2)) == 100.0


def test_confidence_of_fresh_auto_gate():
    gate = make_gate_model(1, "Main", checkin_count=2)
    assert gate_confidence(gate, BASE_TIME) == 30.0


@pytest.mark.parametrize("count,age_hours,expected", [
    (60, 7, 75.0),
    (20, 0, 60.0),
    (11, 25, 70.0),
])
def test_confidence_tiers(count, age_hours, expected):
    gate = make_gate_model(1, "Main", checkin_count=count)
    assert gate_confidence(gate, BASE_TIME + timedelta(hours=age_hours)) == expected


def test_promotion_needs_volume_and_confidence():
    thresholds = AdaptiveThresholds()
    busy = make_gate_model(1, "Main", checkin_count=100)
    assert should_promote(busy, 75.0, thresholds)
    assert not should_promote(busy, 74.0, thresholds)
    assert not should_promote(make_gate_model(2, "Side", checkin_count=99), 90.0, thresholds)
    assert not should_promote(make_gate_model(3, "Ok", checkin_count=500, status="approved"), 90.0, thresholds)


# ---------- duplicates ----------

def test_trailing_space_duplicate_is_suggested():
    a = make_gate_model(1, "Main Gate")
    b = make_gate_model(2, "Main Gate ")
    candidate = compare_gates(a, b, AdaptiveThresholds())
    assert candidate is not None
    assert candidate.confidence_score == pytest.approx(0.9)
    assert candidate.distance_meters is None


def test_distant_dissimilar_gates_are_not_suggested():
    a = make_gate_model(1, "North Gate", 0.0, 0.0)
    b = make_gate_model(2, "VIP Lounge", 1.0, 1.0)
    assert compare_gates(a, b, AdaptiveThresholds()) is None


def test_nearby_gates_are_suggested_by_distance():
    a = make_gate_model(1, "North Gate", 0.0, 0.0)
    b = make_gate_model(2, "VIP Lounge", 0.0, 0.00005)
    candidate = compare_gates(a, b, AdaptiveThresholds())
    assert candidate.confidence_score == 0.98
    assert candidate.distance_meters < 10


@pytest.mark.parametrize("distance,confidence", [(5, 0.98), (12, 0.95), (20, 0.85), (28, 0.70)])
def test_distance_confidence_tiers(distance, confidence):
    assert distance_confidence(distance) == confidence


def test_earlier_gate_is_primary():
    older = make_gate_model(9, "Main Gate", created_at=BASE_TIME)
    newer = make_gate_model(2, "Main Gate ", created_at=BASE_TIME + timedelta(minutes=1))
    assert canonical_pair(newer, older) == (older, newer)

    tie_a = make_gate_model(5, "A")
    tie_b = make_gate_model(3, "B")
    assert canonical_pair(tie_a, tie_b) == (tie_b, tie_a)

    candidate = compare_gates(newer, older, AdaptiveThresholds())
    assert (candidate.primary_gate_id, candidate.secondary_gate_id) == (9, 2)


def test_pairwise_pass_can_be_cancelled_and_resumed():
    gate_list = [make_gate_model(i, f"Gate {i}") for i in range(1, 5)]
    assert total_pairs(len(gate_list)) == 6

    _, checked, next_index, cancelled = find_duplicates(gate_list, AdaptiveThresholds(), StopAfter(2))
    assert cancelled
    assert (checked, next_index) == (2, 2)

    _, checked, next_index, cancelled = find_duplicates(gate_list, AdaptiveThresholds(), start_index=next_index)
    assert not cancelled
    assert (checked, next_index) == (4, 6)


def test_full_pass_finds_all_similar_names():
    gate_list = [make_gate_model(i, f"Gate {i}") for i in range(1, 5)]
    candidates, checked, _, _ = find_duplicates(gate_list, AdaptiveThresholds())
    # "Gate 1" vs "Gate 2" differ by one character out of six
    assert checked == 6
    assert len(candidates) == 6


# ---------- GPS discovery ----------

def reading(lat, lon, minutes, wristband="WB", category="VIP", accuracy=10.0, gate_id=None):
    return GpsReading(gate_id, lat, lon, accuracy, BASE_TIME + timedelta(minutes=minutes), wristband, category)


def test_busy_cell_is_discovered():
    readings = [reading(51.50001, -0.12001, i * 0.1, wristband=f"WB-{i % 4}") for i in range(12)]
    found = cluster_readings(readings, min_checkins=3)
    assert len(found) == 1
    gate = found[0]
    assert gate.checkin_count == 12
    assert gate.unique_wristbands == 4
    assert gate.dominant_category == "VIP"
    assert gate.confidence_score == 0.65
    assert gate.suggested_name == "VIP Access Point"


def test_short_quiet_cell_is_ignored():
    readings = [reading(51.5, -0.12, i * 2) for i in range(5)]
    assert cluster_readings(readings, min_checkins=3) == []


def test_quiet_cell_with_long_span_is_discovered():
    readings = [reading(51.5, -0.12, i * 10, category="General") for i in range(5)]
    found = cluster_readings(readings, min_checkins=3)
    assert found[0].confidence_score == 0.50
    assert found[0].category_distribution == {"General": 5}


def test_discovery_naming_and_confidence_tiers():
    assert suggest_gate_name("VIP", 120) == "Main VIP Gate"
    assert suggest_gate_name("Staff", 60) == "Staff Entrance"
    assert discovery_confidence(100) == 0.95
    assert discovery_confidence(50) == 0.85
    assert discovery_confidence(20) == 0.75
    assert discovery_confidence(9) == 0.50


def test_discover_physical_gates_filters_inaccurate_readings(conn, clustering):
    add_wristband(conn, "WB-1", category="Artist")
    start = utcnow() - timedelta(hours=2)
    for i in range(4):
        add_checkin(conn, "WB-1", start + timedelta(minutes=15 * i), latitude=40.0, longitude=-3.0, accuracy=20)
    add_checkin(conn, "WB-1", start, latitude=41.0, longitude=-3.0, accuracy=80)
    add_checkin(conn, "WB-1", start, latitude=41.0, longitude=-3.0, outcome="denied")

    found = clustering.discover_physical_gates(conn, EVENT_ID, AdaptiveThresholds())
    assert [g.cluster_id for g in found] == ["40.0000,-3.0000"]
    assert found[0].dominant_category == "Artist"
    assert found[0].matched_gate_id is None


def test_discovered_cluster_is_matched_to_the_nearest_gate(conn, clustering):
    add_gate(conn, "Rejected Gate", 40.0, -3.0, status="rejected")
    near = add_gate(conn, "North Gate", 40.0001, -3.0)
    add_gate(conn, "Far Gate", 40.01, -3.0)
    add_gate(conn, "Unplaced Gate")
    start = utcnow() - timedelta(hours=2)
    for i in range(4):
        add_checkin(conn, "WB-1", start + timedelta(minutes=15 * i), latitude=40.0, longitude=-3.0, accuracy=10)
    for i in range(4):
        add_checkin(conn, "WB-2", start + timedelta(minutes=15 * i), latitude=40.005, longitude=-3.0, accuracy=10)

    found = {g.cluster_id: g for g in clustering.discover_physical_gates(conn, EVENT_ID, AdaptiveThresholds())}

    assert found["40.0000,-3.0000"].matched_gate_id == near
    assert found["40.0000,-3.0000"].matched_gate_distance_meters == pytest.approx(11.1, abs=0.2)
    # ~550 m from both located gates
    assert found["40.0050,-3.0000"].matched_gate_id is None


# ---------- bindings ----------

@pytest.mark.parametrize("confidence,samples,status", [
    (0.5, 500, "unbound"),
    (0.8, 500, "enforced"),
    (0.8, 20, "probation"),
])
def test_learned_binding_status(confidence, samples, status):
    assert learned_binding_status(confidence, samples, AdaptiveThresholds()) == status


def test_learning_respects_operator_bindings(conn, clustering):
    thresholds = AdaptiveThresholds(promotion_sample_size=3)
    vip_gate = add_gate(conn, "VIP Gate")
    staff_gate = add_gate(conn, "Staff Gate")
    add_wristband(conn, "WB-V", category="VIP")
    add_wristband(conn, "WB-S", category="Staff")
    now = utcnow()
    for i in range(4):
        add_checkin(conn, "WB-V", now - timedelta(minutes=i), gate_id=vip_gate)
        add_checkin(conn, "WB-S", now - timedelta(minutes=i), gate_id=staff_gate)

    clustering.gate_service.set_binding(conn, staff_gate, "Staff", "probation", actor="ops")
    learned = clustering.learn_bindings(conn, EVENT_ID, thresholds)

    assert learned == 1
    vip = clustering.gate_service.find_binding(conn, vip_gate, "VIP")
    assert (vip.status, vip.confidence, vip.sample_count, vip.source) == ("enforced", 1.0, 4, "learned")
    staff = clustering.gate_service.find_binding(conn, staff_gate, "Staff")
    assert (staff.status, staff.source) == ("probation", "operator")


# ---------- full run ----------

def test_run_creates_suggestions_once(conn, clustering):
    add_gate(conn, "Main Gate", created_at=utcnow() - timedelta(hours=1))
    add_gate(conn, "Main Gate ")
    add_gate(conn, "Food Court")

    result = clustering.run(conn, EVENT_ID, AdaptiveThresholds())
    assert result.total_pairs == 3
    assert result.pairs_checked == 3
    assert result.suggestions_created == 1
    alert = conn.execute(select(system_alerts)).mappings().one()
    assert alert["alert_type"] == "gate_merge_suggested"
    assert alert["severity"] == "medium"

    again = clustering.run(conn, EVENT_ID, AdaptiveThresholds())
    assert again.suggestions_created == 0
    assert len(conn.execute(select(gate_merge_suggestions)).all()) == 1


def test_existing_reverse_suggestion_is_respected(conn, clustering):
    first = add_gate(conn, "Main Gate", created_at=utcnow() - timedelta(hours=1))
    second = add_gate(conn, "Main Gate ")
    conn.execute(
        insert(gate_merge_suggestions).values(
            event_id=EVENT_ID, primary_gate_id=second, secondary_gate_id=first,
            confidence_score=0.9, status="rejected", created_at=utcnow(),
        )
    )
    assert clustering.run(conn, EVENT_ID, AdaptiveThresholds()).suggestions_created == 0


def test_run_promotes_and_infers_coordinates(conn, clustering):
    old = utcnow() - timedelta(days=2)
    busy = add_gate(conn, "Busy Gate", 10.0, 10.0, created_at=old, checkin_count=120)
    blind = add_gate(conn, "Blind Gate", created_at=old)
    now = utcnow()
    add_checkin(conn, "WB-1", now, gate_id=blind, latitude=20.0, longitude=30.0, accuracy=5)
    add_checkin(conn, "WB-2", now, gate_id=blind, latitude=20.0002, longitude=30.0002)
    add_checkin(conn, "WB-3", now, gate_id=blind, latitude=20.0004, longitude=30.0004, accuracy=50)
    add_checkin(conn, "WB-4", now, gate_id=blind, latitude=25.0, longitude=35.0, accuracy=51)

    result = clustering.run(conn, EVENT_ID, AdaptiveThresholds())

    assert result.gates_promoted == [busy]
    assert result.coordinates_inferred == [blind]
    row = conn.execute(select(gates).where(gates.c.id == blind)).mappings().one()
    assert row["latitude"] == pytest.approx(20.0002)
    assert row["longitude"] == pytest.approx(30.0002)

    promoted = conn.execute(select(gates).where(gates.c.id == busy)).mappings().one()
    assert promoted["status"] == "approved"
    assert promoted["approved_at"] is not None
    actions = [r[0] for r in conn.execute(select(audit_log.c.action)).all()]
    assert "gate_promoted" in actions
    types = [r[0] for r in conn.execute(select(system_alerts.c.alert_type)).all()]
    assert "gate_promoted" in types
