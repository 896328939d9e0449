"""
Reconciliation engine for one upload batch.
Runs duplicate detection, matching, aggregation and persistence in order.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import logging
import time

from ..audit.sink import AuditSink, BufferedAuditEmitter
from ..config import ReconConfig
from ..locking import DEFAULT_LOCKS, BatchLockRegistry
from ..models.record import (
    AuditAction,
    AuditEntity,
    AuditEvent,
    DuplicateGroup,
    MatchDetails,
    MatchEntry,
    MatchOutcome,
    MatchType,
    Record,
    RecordStatus,
    ReconciliationResult,
    ReconciliationSummary,
)
from ..store.base import RecordStore
from ..utils.exceptions import (
    InternalFailureError,
    PersistenceFailureError,
    RecordWriteConflictError,
    RunError,
)
from .accuracy import AccuracyAggregator
from .duplicates import DuplicateDetector
from .matcher import RecordMatcher
from .scorer import Scorer, amount_variance

logger = logging.getLogger(__name__)

STATUS_BY_MATCH_TYPE = {
    MatchType.EXACT: RecordStatus.MATCHED,
    MatchType.PARTIAL: RecordStatus.PARTIALLY_MATCHED,
    MatchType.NONE: RecordStatus.UNMATCHED,
}

# Attempts per record when its version changes underneath the run
MAX_WRITE_ATTEMPTS = 2


@dataclass
class _RunState:
    """Mutable bookkeeping for one run."""

    batch_ref: str
    actor_id: Optional[str]
    audit: BufferedAuditEmitter
    phase: str = "load"
    touched: list[str] = field(default_factory=list)
    outcomes: list[MatchOutcome] = field(default_factory=list)
    matches: list[MatchEntry] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)


class ReconciliationEngine:
    """
    Reconciles the uploaded records of a batch against the system partition.

    Only upload records are written. A run holds the batch lock from start
    to finish, and on failure every record it touched is reverted to pending
    before the error is raised.
    """

    def __init__(
        self,
        config: ReconConfig,
        store: RecordStore,
        audit_sink: Optional[AuditSink] = None,
        locks: Optional[BatchLockRegistry] = None,
    ):
        """
        Initialize the reconciliation engine.

        Args:
            config: Application configuration
            store: Record store holding both partitions and results
            audit_sink: Destination for audit events (ignored if audit is disabled)
            locks: Lock registry; defaults to the process-wide registry so
                every engine in the process sees the same batch locks
        """
        self.config = config
        self.store = store
        self.audit_sink = audit_sink if config.audit.enabled else None
        self.locks = locks if locks is not None else DEFAULT_LOCKS

        self.scorer = Scorer(config.matching)
        self.matcher = RecordMatcher(config.matching, self.scorer)
        self.detector = DuplicateDetector()
        self.aggregator = AccuracyAggregator()

    def reconcile(self, batch_ref: str, actor_id: Optional[str] = None) -> ReconciliationResult:
        """
        Reconcile one upload batch.

        Args:
            batch_ref: Batch to reconcile
            actor_id: User or process the run is attributed to

        Returns:
            The stored reconciliation result

        Raises:
            BatchNotFoundError: The batch has no uploaded records
            ConcurrentRunConflictError: A run for this batch is in progress
            RecordWriteConflictError: A record kept changing during the run
            PersistenceFailureError: The result could not be saved
            InternalFailureError: Any other failure
        """
        with self.locks.hold(batch_ref, owner=actor_id):
            return self._run(batch_ref, actor_id)

    def _run(self, batch_ref: str, actor_id: Optional[str]) -> ReconciliationResult:
        state = _RunState(
            batch_ref=batch_ref,
            actor_id=actor_id,
            audit=BufferedAuditEmitter(self.audit_sink),
        )
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        logger.info(f"Starting reconciliation for batch {batch_ref}")

        try:
            uploaded = self.store.fetch_upload_records(batch_ref)
            system_records = self.matcher.order_system_records(
                self.store.fetch_system_records()
            )
            logger.info(
                f"Found {len(uploaded)} uploaded records and "
                f"{len(system_records)} system records"
            )

            state.phase = "detect"
            groups = self.detector.detect(uploaded)
            duplicate_keys = DuplicateDetector.duplicate_ids(groups)
            if groups:
                logger.info(
                    f"Found {len(groups)} duplicate groups covering "
                    f"{len(duplicate_keys)} records"
                )

            state.phase = "match"
            for record in uploaded:
                self._process_record(
                    record, system_records, duplicate_keys.get(record.id), state
                )

            state.phase = "summarize"
            summary = self.aggregator.summarize(state.outcomes, groups, len(uploaded))

            state.phase = "persist"
            result = self._save_result(
                state, summary, list(groups.values()), started_at, start
            )
        except RunError as e:
            if e.batch_ref is None:
                e.batch_ref = batch_ref
            if e.phase is None:
                e.phase = state.phase
            self._fail(state, e)
            raise
        except Exception as e:
            error = InternalFailureError(
                f"Reconciliation failed: {e}", batch_ref=batch_ref, phase=state.phase
            )
            self._fail(state, error)
            raise error from e

        delivered = state.audit.flush()
        logger.info(
            f"Reconciliation complete for batch {batch_ref} in "
            f"{result.processing_time:.2f}s: {summary.matched} matched, "
            f"{summary.partially_matched} partial, {summary.unmatched} unmatched, "
            f"{summary.duplicates} duplicates, accuracy {summary.accuracy_percentage}% "
            f"({delivered} audit events)"
        )
        return result

    def _process_record(
        self,
        record: Record,
        system_records: list[Record],
        duplicate_key: Optional[str],
        state: _RunState,
    ) -> None:
        """Classify one uploaded record and write its status, retrying once on conflict."""
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            if duplicate_key is not None:
                outcome = None
                status, details = RecordStatus.DUPLICATE, None
            else:
                outcome = self.matcher.match(record, system_records)
                status = STATUS_BY_MATCH_TYPE[outcome.match_type]
                details = self._match_details(record, outcome)

            try:
                self._write_status(record, status, details, duplicate_key, state)
                break
            except RecordWriteConflictError as e:
                if attempt == MAX_WRITE_ATTEMPTS:
                    logger.error(f"Record {record.id} still conflicting after retry")
                    raise
                logger.warning(
                    f"Version conflict on record {record.id} "
                    f"(expected {e.expected_version}, found {e.actual_version}), "
                    f"retrying"
                )
                record = self.store.get_record(record.id)

        if outcome is None:
            return

        state.outcomes.append(outcome)
        if outcome.is_match:
            state.matches.append(
                MatchEntry(
                    system_record_id=outcome.system_record.id,
                    uploaded_record_id=record.id,
                    match_type=outcome.match_type,
                    confidence_score=outcome.confidence_score,
                    matched_fields=outcome.matched_fields,
                    mismatched_fields=outcome.mismatched_fields,
                )
            )
        else:
            state.unmatched.append(record.id)

    @staticmethod
    def _match_details(record: Record, outcome: MatchOutcome) -> Optional[MatchDetails]:
        if not outcome.is_match:
            return None

        variance, percent = amount_variance(record, outcome.system_record)
        return MatchDetails(
            matched_with=outcome.system_record.id,
            match_type=outcome.match_type,
            confidence_score=outcome.confidence_score,
            variance_amount=variance,
            variance_percentage=percent,
        )

    def _write_status(
        self,
        record: Record,
        status: RecordStatus,
        details: Optional[MatchDetails],
        duplicate_key: Optional[str],
        state: _RunState,
    ) -> Record:
        updated = self.store.update_record(
            record.id,
            status=status,
            match_details=details,
            expected_version=record.version,
            actor_id=state.actor_id,
            is_duplicate=duplicate_key is not None,
            duplicate_group=duplicate_key,
        )
        if record.id not in state.touched:
            state.touched.append(record.id)

        new_value: dict = {"status": status.value}
        if details is not None:
            new_value["match_details"] = details.to_dict()
        state.audit.record(
            AuditEvent(
                action=AuditAction.UPDATE,
                entity=AuditEntity.RECORD,
                entity_id=record.id,
                actor_id=state.actor_id,
                old_value={"status": record.status.value, "version": record.version},
                new_value={**new_value, "version": updated.version},
                changed_fields=("status",),
                context={"batch_ref": state.batch_ref},
            )
        )
        return updated

    def _save_result(
        self,
        state: _RunState,
        summary: ReconciliationSummary,
        duplicate_groups: list[DuplicateGroup],
        started_at: datetime,
        start: float,
    ) -> ReconciliationResult:
        """Build the result and upsert it by batch reference."""
        result = ReconciliationResult(
            batch_ref=state.batch_ref,
            summary=summary,
            matches=state.matches,
            unmatched_records=state.unmatched,
            duplicate_groups=duplicate_groups,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            processing_time=time.perf_counter() - start,
            rules_applied=self.config.matching.model_dump(mode="json"),
            actor_id=state.actor_id,
        )

        try:
            stored = self.store.upsert_result(result)
        except Exception as e:
            raise PersistenceFailureError(
                f"Failed to save reconciliation result: {e}",
                batch_ref=state.batch_ref,
                phase="persist",
            ) from e

        state.audit.record(
            AuditEvent(
                action=AuditAction.RECONCILE,
                entity=AuditEntity.RECONCILIATION,
                entity_id=stored.id,
                actor_id=state.actor_id,
                new_value=summary.to_dict(),
                context={"batch_ref": state.batch_ref},
            )
        )
        return stored

    def _fail(self, state: _RunState, error: RunError) -> None:
        """Revert touched records to pending, record the failure and flush audit."""
        logger.error(f"Reconciliation failed: {error}")

        for record_id in state.touched:
            try:
                current = self.store.get_record(record_id)
                reverted = self.store.update_record(
                    record_id,
                    status=RecordStatus.PENDING,
                    match_details=None,
                    expected_version=current.version,
                    actor_id=state.actor_id,
                )
            except Exception as e:
                logger.error(f"Failed to revert record {record_id} to pending: {e}")
                continue

            state.audit.record(
                AuditEvent(
                    action=AuditAction.REVERT,
                    entity=AuditEntity.RECORD,
                    entity_id=record_id,
                    actor_id=state.actor_id,
                    old_value={"status": current.status.value, "version": current.version},
                    new_value={"status": reverted.status.value, "version": reverted.version},
                    changed_fields=("status",),
                    context={"batch_ref": state.batch_ref},
                )
            )

        if state.touched:
            logger.warning(
                f"Reverted {len(state.touched)} records of batch {state.batch_ref} to pending"
            )

        state.audit.record(
            AuditEvent(
                action=AuditAction.RECONCILE_FAILED,
                entity=AuditEntity.RECONCILIATION,
                entity_id=None,
                actor_id=state.actor_id,
                new_value={"error": str(error), "error_type": type(error).__name__},
                context={"batch_ref": state.batch_ref, "phase": error.phase},
            )
        )
        state.audit.flush()
