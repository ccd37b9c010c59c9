# =======================================================================================
# gatewatch/models/enums.py - Enums and Constants
# =======================================================================================
from enum import Enum
from typing import Literal

# Type aliases for better type hints
CheckinOutcome = Literal["success", "denied", "fraud", "error", "blocked"]
ScannedOutcome = Literal["success", "denied", "fraud", "error"]
GateStatus = Literal["probation", "approved", "rejected", "active", "inactive"]
BindingStatus = Literal["unbound", "probation", "enforced", "rejected"]
BindingSource = Literal["learned", "operator"]
MergeStatus = Literal["pending", "approved", "rejected", "merged"]
AlertSeverity = Literal["low", "medium", "high", "critical"]
WristbandStatus = Literal["active", "blocked"]

DEFAULT_CATEGORY = "General"

class AlertType(str, Enum):
    """Alert types produced by the detection engines."""
    FRAUD_DETECTION = "fraud_detection"
    IMPOSSIBLE_LOCATION = "impossible_location"
    AUTO_BLOCK = "auto_block"
    POLICY_VIOLATION = "policy_violation"
    GATE_MERGE_SUGGESTED = "gate_merge_suggested"
    GATE_PROMOTED = "gate_promoted"

class AuditAction(str, Enum):
    """Actions recorded in the audit log."""
    AUTO_BLOCK = "auto_block"
    AUTO_BLOCK_FRAUD = "auto_block_fraud"
    MANUAL_UNBLOCK = "manual_unblock"
    GATE_CREATED = "gate_created"
    GATE_AUTO_CREATED = "gate_auto_created"
    GATE_APPROVED = "gate_approved"
    GATE_PROMOTED = "gate_promoted"
    GATE_REJECTED = "gate_rejected"
    GATE_RENAMED = "gate_renamed"
    GATE_MERGED = "gate_merged"
    BINDING_SET = "binding_set"
    SUGGESTION_REJECTED = "merge_suggestion_rejected"
    THRESHOLDS_UPDATED = "thresholds_updated"

NOTIFY_SEVERITIES = ("high", "critical")
