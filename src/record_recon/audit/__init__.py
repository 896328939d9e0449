"""Audit trail emission."""

from .sink import (
    AuditSink,
    BufferedAuditEmitter,
    InMemoryAuditSink,
    JsonlAuditSink,
    LoggingAuditSink,
)

__all__ = [
    "AuditSink",
    "BufferedAuditEmitter",
    "InMemoryAuditSink",
    "JsonlAuditSink",
    "LoggingAuditSink",
]
