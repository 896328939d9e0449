"""Reconciliation of uploaded transaction records against system records."""

from .config import ReconConfig, load_config
from .matching.engine import ReconciliationEngine

__version__ = "0.1.0"

__all__ = ["ReconConfig", "ReconciliationEngine", "load_config", "__version__"]
