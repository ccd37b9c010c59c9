# =======================================================================================
# gatewatch/utils/__init__.py - Utils Package
# =======================================================================================
from .exceptions import *
from .validators import *

__all__ = [
    "GateWatchError", "ValidationError", "DependencyUnavailableError",
    "InconsistentStateError", "GateNotFoundError", "WristbandNotFoundError",
    "SuggestionNotFoundError", "AlertNotFoundError", "InvalidTransitionError",
    "CheckinValidator",
]
