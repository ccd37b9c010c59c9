"""Row and model builders shared by the test modules."""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import insert

from gatewatch.models.schemas import CheckinRecord, Gate
from gatewatch.models.tables import checkin_logs, gates, wristbands
from gatewatch.utils.clock import utcnow

EVENT_ID = "EV-2026"
BASE_TIME = datetime(2026, 10, 18, 12, 0, 0)


def make_record(
    record_id: Optional[int],
    seconds: float,
    outcome: str = "success",
    wristband_id: str = "WB-1",
    gate_id: Optional[int] = 1,
    base: datetime = BASE_TIME,
) -> CheckinRecord:
    return CheckinRecord(
        id=record_id,
        event_id=EVENT_ID,
        wristband_id=wristband_id,
        gate_id=gate_id,
        location=f"Gate {gate_id}" if gate_id else None,
        timestamp=base + timedelta(seconds=seconds),
        outcome=outcome,
    )


def make_gate_model(
    gate_id: int,
    name: str,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    created_at: datetime = BASE_TIME,
    checkin_count: int = 0,
    status: str = "probation",
    auto_created: bool = True,
) -> Gate:
    return Gate(
        id=gate_id,
        event_id=EVENT_ID,
        name=name,
        status=status,
        latitude=latitude,
        longitude=longitude,
        auto_created=auto_created,
        checkin_count=checkin_count,
        created_at=created_at,
    )


def add_gate(
    conn,
    name: str,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    status: str = "probation",
    created_at: Optional[datetime] = None,
    checkin_count: int = 0,
    auto_created: bool = True,
    event_id: str = EVENT_ID,
) -> int:
    created_at = created_at or utcnow()
    result = conn.execute(
        insert(gates).values(
            event_id=event_id,
            name=name,
            status=status,
            latitude=latitude,
            longitude=longitude,
            auto_created=auto_created,
            confidence_score=50.0,
            checkin_count=checkin_count,
            created_at=created_at,
            approved_at=created_at if status in ("approved", "active") else None,
            updated_at=created_at,
        )
    )
    return result.inserted_primary_key[0]


def add_wristband(conn, wristband_id: str, category: str = "General", status: str = "active", event_id: str = EVENT_ID):
    now = utcnow()
    conn.execute(
        insert(wristbands).values(
            wristband_id=wristband_id, event_id=event_id, category=category, status=status,
            blocked_at=now if status == "blocked" else None, notes=[], created_at=now, updated_at=now,
        )
    )


def add_checkin(
    conn,
    wristband_id: str,
    timestamp: datetime,
    outcome: str = "success",
    gate_id: Optional[int] = None,
    location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    accuracy: Optional[float] = None,
    event_id: str = EVENT_ID,
) -> int:
    result = conn.execute(
        insert(checkin_logs).values(
            event_id=event_id,
            wristband_id=wristband_id,
            gate_id=gate_id,
            location=location,
            timestamp=timestamp,
            outcome=outcome,
            app_lat=latitude,
            app_lon=longitude,
            app_accuracy=accuracy,
        )
    )
    return result.inserted_primary_key[0]
