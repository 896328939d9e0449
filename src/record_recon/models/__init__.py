"""Data models for reconciliation."""

from .record import (
    AuditAction,
    AuditEntity,
    AuditEvent,
    DuplicateGroup,
    FieldMismatch,
    MatchDetails,
    MatchEntry,
    MatchOutcome,
    MatchType,
    Record,
    RecordSource,
    RecordStatus,
    ReconciliationResult,
    ReconciliationSummary,
)

__all__ = [
    "AuditAction",
    "AuditEntity",
    "AuditEvent",
    "DuplicateGroup",
    "FieldMismatch",
    "MatchDetails",
    "MatchEntry",
    "MatchOutcome",
    "MatchType",
    "Record",
    "RecordSource",
    "RecordStatus",
    "ReconciliationResult",
    "ReconciliationSummary",
]
