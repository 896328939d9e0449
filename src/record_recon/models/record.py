"""Data models for reconciliation records, outcomes and results."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid


class RecordSource(Enum):
    """Partition a record belongs to."""

    SYSTEM = "system"  # Reference truth, never mutated by the engine
    UPLOAD = "upload"  # Candidates to reconcile


class RecordStatus(Enum):
    """Reconciliation status of an uploaded record."""

    PENDING = "pending"
    MATCHED = "matched"
    PARTIALLY_MATCHED = "partially_matched"
    UNMATCHED = "unmatched"
    DUPLICATE = "duplicate"


class MatchType(Enum):
    """Kind of match found for an uploaded record."""

    EXACT = "exact"
    PARTIAL = "partial"
    NONE = "none"


class AuditAction(Enum):
    UPDATE = "UPDATE"
    RECONCILE = "RECONCILE"
    RECONCILE_FAILED = "RECONCILE_FAILED"
    REVERT = "REVERT"


class AuditEntity(Enum):
    RECORD = "RECORD"
    RECONCILIATION = "RECONCILIATION"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MatchDetails:
    """Match metadata stored on a matched or partially matched record."""

    matched_with: Optional[str]
    match_type: MatchType
    confidence_score: float
    variance_amount: Optional[Decimal] = None
    variance_percentage: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched_with": self.matched_with,
            "match_type": self.match_type.value,
            "confidence_score": self.confidence_score,
            "variance_amount": (
                str(self.variance_amount) if self.variance_amount is not None else None
            ),
            "variance_percentage": self.variance_percentage,
        }


@dataclass
class Record:
    """
    One transaction observation from either the system or an upload batch.

    Fields are already validated and mapped to canonical names before a
    record reaches the engine.
    """

    # Unique identifier within the record store
    id: str

    # Partition (immutable)
    source: RecordSource

    # Transaction identifiers, non-unique across partitions
    transaction_id: str
    reference_number: str

    # Non-negative amount
    amount: Decimal

    # Transaction timestamp
    date: datetime

    # Originating batch, upload records only
    batch_ref: Optional[str] = None

    # Free-form additional attributes
    additional_data: dict[str, Any] = field(default_factory=dict)

    # Reconciliation state
    status: RecordStatus = RecordStatus.PENDING
    match_details: Optional[MatchDetails] = None
    is_duplicate: bool = False
    duplicate_group: Optional[str] = None

    # Optimistic concurrency
    version: int = 1
    last_modified_by: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate partition and amount invariants and normalize the timestamp."""
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        if self.amount < 0:
            raise ValueError(f"Record {self.id}: amount must be non-negative")
        if self.source == RecordSource.UPLOAD and not self.batch_ref:
            raise ValueError(f"Record {self.id}: upload records require a batch_ref")
        if self.source == RecordSource.SYSTEM and self.batch_ref:
            raise ValueError(f"Record {self.id}: system records cannot carry a batch_ref")
        # All timestamps compare as naive UTC
        if self.date.tzinfo is not None:
            self.date = self.date.astimezone(timezone.utc).replace(tzinfo=None)

    @property
    def is_system(self) -> bool:
        return self.source == RecordSource.SYSTEM


@dataclass
class FieldMismatch:
    """A compared field that did not earn full credit."""

    field: str
    uploaded_value: Any
    system_value: Any

    # Amount only
    variance: Optional[Decimal] = None
    variance_percentage: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "field": self.field,
            "uploaded_value": _jsonable(self.uploaded_value),
            "system_value": _jsonable(self.system_value),
        }
        if self.field == "amount":
            data["variance"] = _jsonable(self.variance)
            data["variance_percentage"] = self.variance_percentage
        return data


@dataclass
class MatchOutcome:
    """Result of matching one uploaded record against the system partition."""

    match_type: MatchType
    system_record: Optional[Record] = None
    confidence_score: float = 0.0
    matched_fields: list[str] = field(default_factory=list)
    mismatched_fields: list[FieldMismatch] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return self.match_type != MatchType.NONE


@dataclass
class DuplicateGroup:
    """Uploaded records of one batch sharing a transaction id."""

    key: str
    record_ids: list[str]

    @property
    def count(self) -> int:
        return len(self.record_ids)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "record_ids": list(self.record_ids), "count": self.count}


@dataclass
class MatchEntry:
    """One matched pair as stored on a reconciliation result."""

    system_record_id: str
    uploaded_record_id: str
    match_type: MatchType
    confidence_score: float
    matched_fields: list[str] = field(default_factory=list)
    mismatched_fields: list[FieldMismatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_record_id": self.system_record_id,
            "uploaded_record_id": self.uploaded_record_id,
            "match_type": self.match_type.value,
            "confidence_score": self.confidence_score,
            "matched_fields": list(self.matched_fields),
            "mismatched_fields": [m.to_dict() for m in self.mismatched_fields],
        }


@dataclass(frozen=True)
class ReconciliationSummary:
    """Counts by outcome for one batch. Built by the accuracy aggregator only."""

    total_records: int
    matched: int
    partially_matched: int
    unmatched: int
    duplicates: int
    duplicate_group_count: int
    accuracy_percentage: int

    @property
    def processed(self) -> int:
        """Records that went through matching."""
        return self.matched + self.partially_matched + self.unmatched

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ReconciliationResult:
    """Snapshot of one reconciliation run, unique per batch."""

    batch_ref: str
    summary: ReconciliationSummary
    matches: list[MatchEntry]
    unmatched_records: list[str]
    duplicate_groups: list[DuplicateGroup]

    # Processing metadata
    started_at: datetime
    completed_at: datetime
    processing_time: float  # seconds
    rules_applied: dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "batch_ref": self.batch_ref,
            "summary": self.summary.to_dict(),
            "matches": [m.to_dict() for m in self.matches],
            "unmatched_records": list(self.unmatched_records),
            "duplicate_groups": [g.to_dict() for g in self.duplicate_groups],
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "processing_time": self.processing_time,
            "rules_applied": self.rules_applied,
            "actor_id": self.actor_id,
        }


@dataclass(frozen=True)
class AuditEvent:
    """Append-only audit trail entry emitted by the engine."""

    action: AuditAction
    entity: AuditEntity
    entity_id: Optional[str]
    actor_id: Optional[str]
    old_value: Optional[dict[str, Any]] = None
    new_value: Optional[dict[str, Any]] = None
    changed_fields: tuple[str, ...] = ()
    source: str = "batch"
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "entity": self.entity.value,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "changes": {
                "old_value": self.old_value,
                "new_value": self.new_value,
                "changed_fields": list(self.changed_fields),
            },
            "source": self.source,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value
