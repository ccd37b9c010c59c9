# =======================================================================================
# gatewatch/utils/validators.py - Validation Helpers
# =======================================================================================
from datetime import datetime, timedelta
from typing import Optional
from .clock import to_naive_utc, utcnow
from .exceptions import ValidationError
from ..models.schemas import CheckinRequest

# scanners with a drifting clock may report slightly ahead of the server
MAX_CLOCK_SKEW = timedelta(minutes=5)


class CheckinValidator:
    """Validates and normalizes check-ins before they reach the scoring pipeline."""

    @staticmethod
    def validate_identifiers(request: CheckinRequest) -> bool:
        """Wristband and event ids must carry more than whitespace."""
        if not request.wristband_id.strip():
            raise ValidationError("wristband_id is required")

        if not request.event_id.strip():
            raise ValidationError("event_id is required")

        return True

    @staticmethod
    def validate_location(request: CheckinRequest) -> bool:
        """GPS readings come as a latitude/longitude pair or not at all."""
        if (request.latitude is None) != (request.longitude is None):
            raise ValidationError("latitude and longitude must be given together")

        if request.accuracy is not None and request.latitude is None:
            raise ValidationError("accuracy given without coordinates")

        return True

    @staticmethod
    def normalize_timestamp(timestamp: Optional[datetime], now: Optional[datetime] = None) -> datetime:
        """Naive UTC scan time; missing means now, too far ahead is rejected."""
        now = now or utcnow()
        if timestamp is None:
            return now

        ts = to_naive_utc(timestamp)
        if ts > now + MAX_CLOCK_SKEW:
            raise ValidationError(f"timestamp {ts.isoformat()} is in the future")

        return ts

    @staticmethod
    def normalize_gate_name(name: Optional[str]) -> Optional[str]:
        """Whitespace-only names count as missing; anything else is kept as typed."""
        if name is None or not name.strip():
            return None
        return name

    @classmethod
    def validate(cls, request: CheckinRequest, now: Optional[datetime] = None) -> CheckinRequest:
        """Return a normalized copy of the request or raise ValidationError."""
        cls.validate_identifiers(request)
        cls.validate_location(request)

        return request.model_copy(update={
            "wristband_id": request.wristband_id.strip(),
            "event_id": request.event_id.strip(),
            "gate_name": cls.normalize_gate_name(request.gate_name),
            "timestamp": cls.normalize_timestamp(request.timestamp, now),
        })
