"""HTTP-level tests for the FastAPI routes."""
from datetime import timedelta

from gatewatch.utils.clock import utcnow

from .factories import EVENT_ID


def post_checkin(client, wristband_id="WB-1", gate_name="Main Gate", **extra):
    payload = {"wristband_id": wristband_id, "event_id": EVENT_ID, "gate_name": gate_name, **extra}
    return client.post("/api/checkins", json=payload)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_checkin_roundtrip(client):
    response = post_checkin(client, category="VIP")
    assert response.status_code == 200
    body = response.json()
    assert body["processed_outcome"] == "success"
    assert body["fraud_score"] == 0

    score = client.get(f"/api/events/{EVENT_ID}/wristbands/WB-1/fraud-score")
    assert score.status_code == 200
    assert score.json()["checkin_count"] == 1


def test_malformed_checkins(client):
    assert client.post("/api/checkins", json={"event_id": EVENT_ID}).status_code == 422
    assert post_checkin(client, latitude=10.0).status_code == 400
    assert post_checkin(client, gate_name=None, gate_id=999).status_code == 400


def test_fraud_score_for_unknown_wristband(client):
    assert client.get(f"/api/events/{EVENT_ID}/wristbands/nobody/fraud-score").status_code == 404


def test_unblock_flow(client):
    client.put(f"/api/events/{EVENT_ID}/thresholds", json={"fraud_auto_block_threshold": 25})
    start = utcnow() - timedelta(minutes=5)
    for i in range(4):
        response = post_checkin(client, timestamp=(start + timedelta(seconds=i)).isoformat())
    assert response.json()["processed_outcome"] == "blocked"

    unblocked = client.post(f"/api/events/{EVENT_ID}/wristbands/WB-1/unblock", headers={"X-Actor": "ops"})
    assert unblocked.status_code == 200
    assert unblocked.json()["status"] == "active"
    assert client.post(f"/api/events/{EVENT_ID}/wristbands/WB-1/unblock").status_code == 409

    notifications = client.get("/api/notifications").json()
    assert notifications[0]["alert_type"] == "auto_block"


def test_gate_management(client):
    created = client.post(f"/api/events/{EVENT_ID}/gates", json={"name": "Main Gate", "latitude": 1.0, "longitude": 2.0})
    assert created.status_code == 200
    gate = created.json()
    assert gate["status"] == "approved"

    assert client.post(f"/api/events/{EVENT_ID}/gates", json={"name": "Main Gate"}).status_code == 409
    assert client.post(f"/api/gates/{gate['id']}/reject").status_code == 409
    assert client.post("/api/gates/999/approve").status_code == 404

    renamed = client.post(f"/api/gates/{gate['id']}/rename", json={"name": "North Gate"})
    assert renamed.json()["name"] == "North Gate"

    binding = client.put(f"/api/gates/{gate['id']}/bindings", json={"category": "VIP", "status": "enforced"})
    assert binding.status_code == 200
    assert binding.json()["source"] == "operator"
    assert len(client.get(f"/api/gates/{gate['id']}/bindings").json()) == 1

    listed = client.get(f"/api/events/{EVENT_ID}/gates", params={"status": "approved"}).json()
    assert [g["name"] for g in listed] == ["North Gate"]


def test_probation_gate_approve_and_reject(client):
    a = post_checkin(client, gate_name="Side Door").json()["gate_id"]
    b = post_checkin(client, wristband_id="WB-2", gate_name="Back Door").json()["gate_id"]

    assert client.post(f"/api/gates/{a}/approve").json()["status"] == "approved"
    assert client.post(f"/api/gates/{b}/reject").json()["status"] == "rejected"
    names = [g["name"] for g in client.get(f"/api/events/{EVENT_ID}/gates").json()]
    assert names == ["Side Door"]


def test_cluster_and_merge_suggestions(client):
    post_checkin(client, gate_name="Main Gate")
    post_checkin(client, wristband_id="WB-2", gate_name="Main Gate ")

    result = client.post(f"/api/events/{EVENT_ID}/gates/cluster").json()
    assert result["suggestions_created"] == 1

    suggestions = client.get(f"/api/events/{EVENT_ID}/merge-suggestions").json()
    assert len(suggestions) == 1
    approved = client.post(f"/api/merge-suggestions/{suggestions[0]['id']}/approve")
    assert approved.status_code == 200
    assert approved.json()["name"] == "Main Gate"
    assert approved.json()["checkin_count"] == 2

    assert client.post(f"/api/merge-suggestions/{suggestions[0]['id']}/reject").status_code == 409
    assert client.post("/api/merge-suggestions/999/reject").status_code == 404
    assert len(client.get(f"/api/events/{EVENT_ID}/gates").json()) == 1


def test_manual_merge(client):
    a = post_checkin(client, gate_name="Gate 1").json()["gate_id"]
    b = post_checkin(client, wristband_id="WB-2", gate_name="Gate One").json()["gate_id"]
    merged = client.post("/api/gates/merge", json={"primary_gate_id": a, "secondary_gate_id": b})
    assert merged.status_code == 200
    assert post_checkin(client, wristband_id="WB-3", gate_name="Gate One").json()["gate_id"] == a


def test_discover_and_travel_reports(client):
    assert client.get(f"/api/events/{EVENT_ID}/gates/discover").json() == []
    assert client.get(f"/api/events/{EVENT_ID}/fraud/impossible-travel").json() == []
    assert client.post(f"/api/events/{EVENT_ID}/fraud/sweep").json() == []


def test_thresholds(client):
    defaults = client.get(f"/api/events/{EVENT_ID}/thresholds").json()
    assert defaults["fraud_auto_block_threshold"] == 90
    assert defaults["duplicate_distance_meters"] == 30

    updated = client.put(f"/api/events/{EVENT_ID}/thresholds", json={"max_speed_kmh": 12})
    assert updated.json()["max_speed_kmh"] == 12
    assert updated.json()["fraud_auto_block_threshold"] == 90
    assert client.put(f"/api/events/{EVENT_ID}/thresholds", json={"confidence_threshold": 2}).status_code == 422

    audit = client.get(f"/api/events/{EVENT_ID}/audit").json()
    assert audit[0]["action"] == "thresholds_updated"


def test_alerts_and_summary(client):
    start = utcnow() - timedelta(minutes=5)
    for i in range(4):
        post_checkin(client, timestamp=(start + timedelta(seconds=i)).isoformat())
    post_checkin(client, wristband_id="WB-2", outcome="denied")

    alerts = client.get(f"/api/events/{EVENT_ID}/alerts").json()
    assert [a["alert_type"] for a in alerts] == ["fraud_detection"]
    resolved = client.post(f"/api/alerts/{alerts[0]['id']}/resolve").json()
    assert resolved["resolved"] is True
    assert client.post("/api/alerts/999/resolve").status_code == 404
    assert client.get(f"/api/events/{EVENT_ID}/alerts", params={"resolved": False}).json() == []

    summary = client.get(f"/api/events/{EVENT_ID}/summary").json()
    assert summary["total_checkins"] == 5
    assert summary["successful_checkins"] == 4
    assert summary["unique_wristbands"] == 2
    assert summary["gates_by_status"] == {"probation": 1}
    assert summary["open_alerts"] == 0
