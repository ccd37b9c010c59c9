# =======================================================================================
# gatewatch/services/__init__.py - Services Package
# =======================================================================================
from .checkin_service import CheckinService
from .fraud_scoring import FraudScoringService
from .impossible_travel import ImpossibleTravelService
from .gate_clustering import GateClusteringService
from .gate_service import GateService
from .wristband_service import WristbandService
from .alert_service import AlertService

__all__ = [
    "CheckinService", "FraudScoringService", "ImpossibleTravelService",
    "GateClusteringService", "GateService", "WristbandService", "AlertService",
]
