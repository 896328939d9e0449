"""Record store interface and implementations."""

from .base import RecordStore
from .loader import RecordLoader
from .memory import InMemoryRecordStore

__all__ = ["RecordStore", "RecordLoader", "InMemoryRecordStore"]
