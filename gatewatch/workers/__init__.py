# =======================================================================================
# gatewatch/workers/__init__.py - Workers Package
# =======================================================================================
from .sweep_worker import SweepWorker, start_sweep_worker

__all__ = ["SweepWorker", "start_sweep_worker"]
