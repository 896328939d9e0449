"""Utility modules."""

from .exceptions import (
    BatchNotFoundError,
    ConcurrentRunConflictError,
    ConfigurationError,
    InternalFailureError,
    PersistenceFailureError,
    ReconciliationError,
    RecordLoadError,
    RecordWriteConflictError,
    RunError,
)
from .logging_config import setup_logging

__all__ = [
    "BatchNotFoundError",
    "ConcurrentRunConflictError",
    "ConfigurationError",
    "InternalFailureError",
    "PersistenceFailureError",
    "ReconciliationError",
    "RecordLoadError",
    "RecordWriteConflictError",
    "RunError",
    "setup_logging",
]
