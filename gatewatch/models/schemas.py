# =======================================================================================
# gatewatch/models/schemas.py - Pydantic Models
# =======================================================================================
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from ..config import config
from .enums import (
    CheckinOutcome, ScannedOutcome, GateStatus, BindingStatus, BindingSource,
    MergeStatus, AlertSeverity, WristbandStatus,
)

# ========== Check-in ingest ==========
class CheckinRequest(BaseModel):
    """Check-in attempt reported by a scanning client."""
    wristband_id: str = Field(..., min_length=1, max_length=100, description="NFC wristband identifier")
    event_id: str = Field(..., min_length=1, max_length=64, description="Event the scan belongs to")
    gate_id: Optional[int] = Field(None, description="Known gate id, if the scanner has one")
    gate_name: Optional[str] = Field(None, max_length=255, description="Location string as typed on the scanner")
    timestamp: Optional[datetime] = Field(None, description="Scan time; defaults to now")
    outcome: ScannedOutcome = Field("success", description="Outcome decided by the scanner")
    processing_time_ms: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, max_length=100, description="Wristband category, if known")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0, description="GPS accuracy in meters")

class CheckinRecord(BaseModel):
    """One row of a wristband's check-in history; id is None until persisted."""
    id: Optional[int] = None
    event_id: str
    wristband_id: str
    gate_id: Optional[int] = None
    location: Optional[str] = None
    timestamp: datetime
    outcome: CheckinOutcome

class CheckinResponse(BaseModel):
    checkin_id: Optional[int] = None
    processed_outcome: CheckinOutcome
    original_outcome: ScannedOutcome
    gate_id: Optional[int] = None
    gate_name: Optional[str] = None
    fraud_score: Optional[int] = None
    alerts: List[str] = []
    message: str

# ========== Fraud scoring ==========
class WristbandFraudState(BaseModel):
    wristband_id: str
    event_id: str
    checkin_count: int = 0
    rapid_checkins: int = 0
    blocked_attempts: int = 0
    trailing_count_5m: int = 0
    hourly_count: int = 0
    fraud_score: int = 0
    blocked_at: Optional[datetime] = None
    computed_at: datetime

class FraudDecision(BaseModel):
    """Result of scoring one successful check-in."""
    state: WristbandFraudState
    alert_severity: Optional[AlertSeverity] = None
    auto_block: bool = False
    final_outcome: CheckinOutcome
    reason: Optional[str] = None

class FraudSweepRow(BaseModel):
    wristband_id: str
    fraud_score: int
    blocked: bool
    already_blocked: bool = False

class ImpossibleTravel(BaseModel):
    wristband_id: str
    distance_meters: float
    time_diff_seconds: float
    speed_kmh: float
    from_gate_id: int
    to_gate_id: int
    from_checkin_id: int
    to_checkin_id: int
    from_timestamp: datetime
    to_timestamp: datetime

class Wristband(BaseModel):
    wristband_id: str
    event_id: str
    category: str
    status: WristbandStatus
    blocked_at: Optional[datetime] = None
    notes: Optional[List[Dict[str, Any]]] = None

# ========== Gates ==========
class Gate(BaseModel):
    id: int
    event_id: str
    name: str
    status: GateStatus
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    auto_created: bool = True
    confidence_score: float = 50.0
    checkin_count: int = 0
    created_at: datetime
    approved_at: Optional[datetime] = None

class CreateGateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

class RenameGateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

class MergeGatesRequest(BaseModel):
    primary_gate_id: int
    secondary_gate_id: int

class GateBinding(BaseModel):
    id: int
    gate_id: int
    event_id: str
    category: str
    status: BindingStatus
    confidence: float = 0.0
    sample_count: int = 0
    violation_count: int = 0
    last_violation_at: Optional[datetime] = None
    source: BindingSource = "learned"

class SetBindingRequest(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    status: BindingStatus

class MergeCandidate(BaseModel):
    """Duplicate pair found by the clustering pass, before persistence."""
    primary_gate_id: int
    secondary_gate_id: int
    name_similarity: float
    distance_meters: Optional[float] = None
    confidence_score: float
    reasoning: str

class GateMergeSuggestion(BaseModel):
    id: int
    event_id: str
    primary_gate_id: int
    secondary_gate_id: int
    confidence_score: float
    name_similarity: Optional[float] = None
    reasoning: Optional[str] = None
    distance_meters: Optional[float] = None
    status: MergeStatus
    created_at: datetime
    reviewed_at: Optional[datetime] = None

class DiscoveredGate(BaseModel):
    cluster_id: str
    suggested_name: str
    latitude: float
    longitude: float
    checkin_count: int
    unique_wristbands: int
    dominant_category: str
    category_distribution: Dict[str, int]
    first_seen: datetime
    last_seen: datetime
    avg_accuracy: float
    confidence_score: float
    # nearest located gate of the event within matching range
    matched_gate_id: Optional[int] = None
    matched_gate_distance_meters: Optional[float] = None

class ClusteringResult(BaseModel):
    event_id: str
    gates_scored: int = 0
    gates_promoted: List[int] = []
    coordinates_inferred: List[int] = []
    bindings_learned: int = 0
    suggestions_created: int = 0
    pairs_checked: int = 0
    total_pairs: int = 0
    next_pair_index: int = 0
    cancelled: bool = False

# ========== Thresholds ==========
class AdaptiveThresholds(BaseModel):
    duplicate_distance_meters: float = Field(config.DUPLICATE_DISTANCE_METERS, gt=0)
    promotion_sample_size: int = Field(config.PROMOTION_SAMPLE_SIZE, ge=1)
    confidence_threshold: float = Field(config.CONFIDENCE_THRESHOLD, ge=0, le=1)
    min_checkins_for_gate: int = Field(config.MIN_CHECKINS_FOR_GATE, ge=1)
    max_speed_kmh: float = Field(config.MAX_SPEED_KMH, gt=0)
    fraud_auto_block_threshold: int = Field(config.FRAUD_AUTO_BLOCK_THRESHOLD, ge=0, le=100)
    fraud_sweep_block_threshold: int = Field(config.FRAUD_SWEEP_BLOCK_THRESHOLD, ge=0, le=100)
    name_similarity_threshold: float = Field(config.NAME_SIMILARITY_THRESHOLD, ge=0, le=1)

class ThresholdsUpdate(BaseModel):
    duplicate_distance_meters: Optional[float] = Field(None, gt=0)
    promotion_sample_size: Optional[int] = Field(None, ge=1)
    confidence_threshold: Optional[float] = Field(None, ge=0, le=1)
    min_checkins_for_gate: Optional[int] = Field(None, ge=1)
    max_speed_kmh: Optional[float] = Field(None, gt=0)
    fraud_auto_block_threshold: Optional[int] = Field(None, ge=0, le=100)
    fraud_sweep_block_threshold: Optional[int] = Field(None, ge=0, le=100)
    name_similarity_threshold: Optional[float] = Field(None, ge=0, le=1)

# ========== Alerts ==========
class SystemAlert(BaseModel):
    id: int
    event_id: str
    alert_type: str
    severity: AlertSeverity
    message: str
    data: Dict[str, Any] = {}
    resolved: bool = False
    created_at: datetime
    resolved_at: Optional[datetime] = None

class AlertPayload(BaseModel):
    """Structured notification for the dashboard; no UI text formatting."""
    event_id: str
    alert_type: str
    severity: AlertSeverity
    message: str
    data: Dict[str, Any] = {}

# ========== Generic / dashboard ==========
class ActionResponse(BaseModel):
    success: bool
    message: str

class HealthResponse(BaseModel):
    status: str                 # "ok" | "error"
    dataAvailable: bool
    message: Optional[str] = None

class EventSummary(BaseModel):
    event_id: str
    total_checkins: int
    successful_checkins: int
    blocked_checkins: int
    unique_wristbands: int
    blocked_wristbands: int
    gates_by_status: Dict[str, int]
    pending_merge_suggestions: int
    open_alerts: int
    open_alerts_by_severity: Dict[str, int]
