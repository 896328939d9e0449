"""Thread-safe in-memory record store."""

from copy import deepcopy
from typing import Iterable, Optional
import logging
import threading

from ..models.record import (
    MatchDetails,
    Record,
    RecordSource,
    RecordStatus,
    ReconciliationResult,
)
from ..utils.exceptions import BatchNotFoundError, RecordWriteConflictError
from .base import RecordStore

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """
    Record store backed by dictionaries.

    Every read hands out deep copies so callers work on snapshots, and every
    write happens under one lock.
    """

    def __init__(self, records: Optional[Iterable[Record]] = None):
        self._lock = threading.RLock()
        self._records: dict[str, Record] = {}
        self._results: dict[str, ReconciliationResult] = {}
        if records:
            self.add_records(records)

    def add_records(self, records: Iterable[Record]) -> None:
        with self._lock:
            for record in records:
                if record.id in self._records:
                    raise ValueError(f"Duplicate record id: {record.id}")
                self._records[record.id] = deepcopy(record)

    def get_record(self, record_id: str) -> Record:
        with self._lock:
            return deepcopy(self._records[record_id])

    def fetch_upload_records(self, batch_ref: str) -> list[Record]:
        with self._lock:
            records = [
                deepcopy(r)
                for r in self._records.values()
                if r.source == RecordSource.UPLOAD and r.batch_ref == batch_ref
            ]
        if not records:
            raise BatchNotFoundError(
                "No uploaded records found for batch", batch_ref=batch_ref, phase="load"
            )
        return records

    def fetch_system_records(self) -> list[Record]:
        with self._lock:
            return [
                deepcopy(r)
                for r in self._records.values()
                if r.source == RecordSource.SYSTEM
            ]

    def update_record(
        self,
        record_id: str,
        *,
        status: RecordStatus,
        match_details: Optional[MatchDetails],
        expected_version: int,
        actor_id: Optional[str] = None,
        is_duplicate: bool = False,
        duplicate_group: Optional[str] = None,
    ) -> Record:
        with self._lock:
            record = self._records[record_id]
            if record.source == RecordSource.SYSTEM:
                raise ValueError(f"System record {record_id} cannot be updated")
            if record.version != expected_version:
                raise RecordWriteConflictError(
                    f"Version conflict on record {record_id}",
                    record_id=record_id,
                    expected_version=expected_version,
                    actual_version=record.version,
                    batch_ref=record.batch_ref,
                )

            record.status = status
            record.match_details = deepcopy(match_details)
            record.is_duplicate = is_duplicate
            record.duplicate_group = duplicate_group
            record.last_modified_by = actor_id
            record.version += 1
            return deepcopy(record)

    def upsert_result(self, result: ReconciliationResult) -> ReconciliationResult:
        with self._lock:
            replaced = self._results.get(result.batch_ref)
            self._results[result.batch_ref] = deepcopy(result)
        if replaced is not None:
            logger.debug(
                f"Replaced reconciliation result {replaced.id} for batch {result.batch_ref}"
            )
        return result

    def get_result(self, batch_ref: str) -> Optional[ReconciliationResult]:
        with self._lock:
            result = self._results.get(batch_ref)
            return deepcopy(result) if result is not None else None

    def status_counts(self, batch_ref: str) -> dict[str, int]:
        """Count upload records of a batch by status."""
        counts: dict[str, int] = {}
        with self._lock:
            for record in self._records.values():
                if record.source == RecordSource.UPLOAD and record.batch_ref == batch_ref:
                    counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts
