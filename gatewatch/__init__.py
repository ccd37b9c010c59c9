# =======================================================================================
# gatewatch/__init__.py - Package Initialization
# =======================================================================================
"""
GateWatch - wristband fraud detection and gate discovery

Scores NFC wristband check-ins for fraud in near-real-time, flags impossible
travel between gates and turns auto-created checkpoints into a trusted gate
topology through clustering, deduplication and confidence-based promotion.
"""

__version__ = "1.0.0"
__author__ = "GateWatch Team"
