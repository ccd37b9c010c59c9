# =======================================================================================
# gatewatch/utils/exceptions.py - Custom Exceptions
# =======================================================================================
class GateWatchError(Exception):
    """Base exception for the gate and fraud detection core."""
    pass

class ValidationError(GateWatchError):
    """Raised when a check-in is malformed and must not be scored."""
    pass

class DependencyUnavailableError(GateWatchError):
    """Raised when the persistence or notification collaborator is down."""
    pass

class InconsistentStateError(GateWatchError):
    """Raised when a referenced record vanished, e.g. during a concurrent merge."""
    pass

class GateNotFoundError(GateWatchError):
    """Raised when a gate is not found."""
    pass

class WristbandNotFoundError(GateWatchError):
    """Raised when a wristband is not found."""
    pass

class SuggestionNotFoundError(GateWatchError):
    """Raised when a merge suggestion is not found."""
    pass

class AlertNotFoundError(GateWatchError):
    """Raised when an alert is not found."""
    pass

class InvalidTransitionError(GateWatchError):
    """Raised when an operator action is not allowed in the current state."""
    pass
