# =======================================================================================
# gatewatch/models/tables.py - Table Definitions
# =======================================================================================
from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Float, Boolean, DateTime, Text, JSON,
    UniqueConstraint, Index,
)

metadata = MetaData()

wristbands = Table(
    "wristbands", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("wristband_id", String(100), nullable=False),
    Column("event_id", String(64), nullable=False),
    Column("category", String(100), nullable=False, default="General"),
    Column("status", String(20), nullable=False, default="active"),
    Column("blocked_at", DateTime, nullable=True),
    Column("notes", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("wristband_id", "event_id", name="uq_wristband_event"),
)

checkin_logs = Table(
    "checkin_logs", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=False),
    Column("wristband_id", String(100), nullable=False),
    Column("gate_id", Integer, nullable=True),
    Column("location", String(255), nullable=True),
    Column("timestamp", DateTime, nullable=False),
    Column("outcome", String(20), nullable=False),
    Column("processing_time_ms", Integer, nullable=True),
    Column("app_lat", Float, nullable=True),
    Column("app_lon", Float, nullable=True),
    Column("app_accuracy", Float, nullable=True),
    Column("notes", JSON, nullable=True),
    Index("idx_checkin_logs_wristband_timestamp", "event_id", "wristband_id", "timestamp"),
    Index("idx_checkin_logs_event_timestamp", "event_id", "timestamp"),
)

gates = Table(
    "gates", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=False),
    Column("name", String(255), nullable=False),
    Column("status", String(20), nullable=False, default="probation"),
    Column("latitude", Float, nullable=True),
    Column("longitude", Float, nullable=True),
    Column("auto_created", Boolean, nullable=False, default=True),
    Column("confidence_score", Float, nullable=False, default=50.0),
    Column("checkin_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False),
    Column("approved_at", DateTime, nullable=True),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("event_id", "name", name="uq_gate_event_name"),
)

gate_aliases = Table(
    "gate_aliases", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=False),
    Column("alias_name", String(255), nullable=False),
    Column("former_gate_id", Integer, nullable=True),
    # NULL target means the location string was rejected
    Column("gate_id", Integer, nullable=True),
    Column("created_at", DateTime, nullable=False),
    UniqueConstraint("event_id", "alias_name", name="uq_gate_alias_name"),
)

gate_merge_suggestions = Table(
    "gate_merge_suggestions", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=False),
    Column("primary_gate_id", Integer, nullable=False),
    Column("secondary_gate_id", Integer, nullable=False),
    Column("confidence_score", Float, nullable=False, default=0.0),
    Column("name_similarity", Float, nullable=True),
    Column("reasoning", Text, nullable=True),
    Column("distance_meters", Float, nullable=True),
    Column("status", String(20), nullable=False, default="pending"),
    Column("created_at", DateTime, nullable=False),
    Column("reviewed_at", DateTime, nullable=True),
    UniqueConstraint("event_id", "primary_gate_id", "secondary_gate_id", name="uq_merge_pair"),
)

gate_bindings = Table(
    "gate_bindings", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("gate_id", Integer, nullable=False),
    Column("event_id", String(64), nullable=False),
    Column("category", String(100), nullable=False),
    Column("status", String(20), nullable=False, default="unbound"),
    Column("confidence", Float, nullable=False, default=0.0),
    Column("sample_count", Integer, nullable=False, default=0),
    Column("violation_count", Integer, nullable=False, default=0),
    Column("last_violation_at", DateTime, nullable=True),
    Column("source", String(20), nullable=False, default="learned"),
    Column("bound_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    UniqueConstraint("gate_id", "category", name="uq_binding_gate_category"),
)

system_alerts = Table(
    "system_alerts", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=False),
    Column("alert_type", String(50), nullable=False),
    Column("severity", String(20), nullable=False, default="medium"),
    Column("message", Text, nullable=False),
    Column("data", JSON, nullable=True),
    Column("resolved", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False),
    Column("resolved_at", DateTime, nullable=True),
    Index("idx_system_alerts_event_id", "event_id"),
)

wristband_fraud_state = Table(
    "wristband_fraud_state", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("wristband_id", String(100), nullable=False),
    Column("event_id", String(64), nullable=False),
    Column("checkin_count", Integer, nullable=False, default=0),
    Column("rapid_checkins", Integer, nullable=False, default=0),
    Column("blocked_attempts", Integer, nullable=False, default=0),
    Column("trailing_count_5m", Integer, nullable=False, default=0),
    Column("hourly_count", Integer, nullable=False, default=0),
    Column("fraud_score", Integer, nullable=False, default=0),
    Column("blocked_at", DateTime, nullable=True),
    Column("computed_at", DateTime, nullable=False),
    UniqueConstraint("wristband_id", "event_id", name="uq_fraud_state_key"),
)

adaptive_thresholds = Table(
    "adaptive_thresholds", metadata,
    Column("event_id", String(64), primary_key=True),
    Column("duplicate_distance_meters", Float, nullable=False),
    Column("promotion_sample_size", Integer, nullable=False),
    Column("confidence_threshold", Float, nullable=False),
    Column("min_checkins_for_gate", Integer, nullable=False),
    Column("max_speed_kmh", Float, nullable=False),
    Column("fraud_auto_block_threshold", Integer, nullable=False),
    Column("fraud_sweep_block_threshold", Integer, nullable=False),
    Column("name_similarity_threshold", Float, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

audit_log = Table(
    "audit_log", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String(64), nullable=True),
    Column("action", String(64), nullable=False),
    Column("table_name", String(64), nullable=True),
    Column("record_id", String(100), nullable=True),
    Column("old_values", JSON, nullable=True),
    Column("new_values", JSON, nullable=True),
    Column("actor", String(100), nullable=True),
    Column("created_at", DateTime, nullable=False),
)
