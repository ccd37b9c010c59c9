# =======================================================================================
# gatewatch/services/impossible_travel.py - Impossible-Travel Detector
# =======================================================================================
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from sqlalchemy import select
from sqlalchemy.engine import Connection
from ..config import config
from ..models.enums import AlertType
from ..models.schemas import AdaptiveThresholds, CheckinRecord, ImpossibleTravel
from ..models.tables import checkin_logs, gates
from ..utils.clock import utcnow
from ..utils.geo import Point, haversine_distance
from .alert_service import AlertService
from .fraud_scoring import order_history

logger = logging.getLogger(__name__)

LOOKBACK = timedelta(days=1)
MIN_DISTANCE_METERS = 50.0  # shorter hops are GPS noise


def kmh_to_ms(kmh: float) -> float:
    return kmh * 1000 / 3600


class ImpossibleTravelService:
    """Flags wristbands that moved between gates faster than a person can."""

    def __init__(self, alert_service: Optional[AlertService] = None, window_size: int = config.IMPOSSIBLE_TRAVEL_WINDOW):
        self.alert_service = alert_service or AlertService()
        self.window_size = window_size

    def detect_pairs(
        self,
        checkins: Sequence[CheckinRecord],
        gate_positions: Dict[int, Point],
        now: datetime,
        max_speed_kmh: float,
        ending_at: Optional[int] = None,
    ) -> List[ImpossibleTravel]:
        """
        Pairwise scan of each wristband's most recent check-ins.

        Every ordered pair (c1, c2) of the same wristband with c2 later than c1,
        both at gates with known coordinates and c1 inside the 24h lookback, is
        flagged when the implied speed exceeds ``max_speed_kmh`` and the hop is
        longer than 50 m. ``ending_at`` restricts the output to pairs whose second
        check-in has that id.
        """
        max_speed_ms = kmh_to_ms(max_speed_kmh)
        since = now - LOOKBACK

        by_wristband: Dict[str, List[CheckinRecord]] = defaultdict(list)
        for record in checkins:
            by_wristband[record.wristband_id].append(record)

        flagged: List[ImpossibleTravel] = []
        for wristband_id, records in by_wristband.items():
            recent = order_history(records)[-self.window_size:]
            for i, first in enumerate(recent):
                if first.timestamp < since:
                    continue
                start = gate_positions.get(first.gate_id)
                if start is None:
                    continue

                for second in recent[i + 1:]:
                    if ending_at is not None and second.id != ending_at:
                        continue
                    end = gate_positions.get(second.gate_id)
                    if end is None:
                        continue

                    time_diff = (second.timestamp - first.timestamp).total_seconds()
                    if time_diff <= 0:
                        continue

                    distance = haversine_distance(start[0], start[1], end[0], end[1])
                    speed = distance / time_diff
                    if speed > max_speed_ms and distance > MIN_DISTANCE_METERS:
                        flagged.append(ImpossibleTravel(
                            wristband_id=wristband_id,
                            distance_meters=round(distance, 2),
                            time_diff_seconds=time_diff,
                            speed_kmh=round(speed * 3.6, 2),
                            from_gate_id=first.gate_id,
                            to_gate_id=second.gate_id,
                            from_checkin_id=first.id,
                            to_checkin_id=second.id,
                            from_timestamp=first.timestamp,
                            to_timestamp=second.timestamp,
                        ))

        return flagged

    # ------------------------------------------------------------------
    # Database-backed entry points
    # ------------------------------------------------------------------
    @staticmethod
    def gate_positions(conn: Connection, event_id: str) -> Dict[int, Point]:
        rows = conn.execute(
            select(gates.c.id, gates.c.latitude, gates.c.longitude).where(
                gates.c.event_id == event_id,
                gates.c.latitude.is_not(None),
                gates.c.longitude.is_not(None),
            )
        ).all()
        return {row.id: (row.latitude, row.longitude) for row in rows}

    @staticmethod
    def _recent_checkins(
        conn: Connection,
        event_id: str,
        since: datetime,
        wristband_id: Optional[str] = None,
        until: Optional[datetime] = None,
    ) -> List[CheckinRecord]:
        query = select(
            checkin_logs.c.id, checkin_logs.c.event_id, checkin_logs.c.wristband_id,
            checkin_logs.c.gate_id, checkin_logs.c.location, checkin_logs.c.timestamp,
            checkin_logs.c.outcome,
        ).where(
            checkin_logs.c.event_id == event_id,
            checkin_logs.c.timestamp >= since,
            checkin_logs.c.gate_id.is_not(None),
        )
        if wristband_id is not None:
            query = query.where(checkin_logs.c.wristband_id == wristband_id)
        if until is not None:
            query = query.where(checkin_logs.c.timestamp <= until)
        rows = conn.execute(query.order_by(checkin_logs.c.timestamp, checkin_logs.c.id)).mappings().all()
        return [CheckinRecord(**row) for row in rows]

    def detect_for_event(
        self, conn: Connection, event_id: str, thresholds: AdaptiveThresholds, now: Optional[datetime] = None
    ) -> List[ImpossibleTravel]:
        """Every flagged pair for the event (read-only report)."""
        now = now or utcnow()
        positions = self.gate_positions(conn, event_id)
        if len(positions) < 2:
            return []
        checkins = self._recent_checkins(conn, event_id, now - LOOKBACK)
        return self.detect_pairs(checkins, positions, now, thresholds.max_speed_kmh)

    def check_checkin(
        self, conn: Connection, record: CheckinRecord, thresholds: AdaptiveThresholds
    ) -> List[ImpossibleTravel]:
        """Flag pairs ending at a freshly stored check-in and raise one alert per pair."""
        if record.id is None or record.gate_id is None:
            return []

        positions = self.gate_positions(conn, record.event_id)
        if record.gate_id not in positions:
            return []

        # the window ends at the scan itself; later check-ins are not part of it
        now = record.timestamp
        checkins = self._recent_checkins(conn, record.event_id, now - LOOKBACK, record.wristband_id, until=now)
        flagged = self.detect_pairs(checkins, positions, now, thresholds.max_speed_kmh, ending_at=record.id)

        for travel in flagged:
            self.alert_service.emit(
                conn,
                record.event_id,
                AlertType.IMPOSSIBLE_LOCATION,
                "high",
                f"Impossible travel for wristband {travel.wristband_id}: "
                f"{travel.distance_meters:.0f} m in {travel.time_diff_seconds:.0f} s",
                travel.model_dump(mode="json"),
            )
        if flagged:
            logger.info("[%s] %d impossible-travel pair(s) for %s", record.event_id, len(flagged), record.wristband_id)
        return flagged
