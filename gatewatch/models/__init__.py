# =======================================================================================
# gatewatch/models/__init__.py - Models Package
# =======================================================================================
from .schemas import *
from .enums import *

__all__ = [
    "CheckinRequest", "CheckinRecord", "CheckinResponse", "WristbandFraudState",
    "FraudDecision", "ImpossibleTravel", "Gate", "GateBinding", "GateMergeSuggestion",
    "DiscoveredGate", "ClusteringResult", "AdaptiveThresholds", "SystemAlert",
    "AlertPayload", "CheckinOutcome", "GateStatus", "BindingStatus", "AlertSeverity",
    "AlertType", "AuditAction",
]
