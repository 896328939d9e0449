"""Record store interface consumed by the reconciliation engine."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from ..models.record import MatchDetails, Record, RecordStatus, ReconciliationResult


class RecordStore(ABC):
    """
    Holds the system and upload record partitions plus reconciliation results.

    Implementations must be safe to call from several threads, since distinct
    batches may reconcile concurrently.
    """

    @abstractmethod
    def add_records(self, records: Iterable[Record]) -> None:
        """Insert records into their partitions."""

    @abstractmethod
    def get_record(self, record_id: str) -> Record:
        """
        Return a copy of one record.

        Raises:
            KeyError: If no record has this id
        """

    @abstractmethod
    def fetch_upload_records(self, batch_ref: str) -> list[Record]:
        """
        Return copies of every upload record tagged to the batch.

        Raises:
            BatchNotFoundError: If the batch has no records
        """

    @abstractmethod
    def fetch_system_records(self) -> list[Record]:
        """Return copies of every system record in retrieval order."""

    @abstractmethod
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
        """
        Apply a status change guarded by the record version.

        Returns:
            Copy of the updated record, with its version incremented

        Raises:
            RecordWriteConflictError: If the stored version differs from
                ``expected_version``
            ValueError: If the record belongs to the system partition
        """

    @abstractmethod
    def upsert_result(self, result: ReconciliationResult) -> ReconciliationResult:
        """Store a result, atomically replacing any prior result for its batch."""

    @abstractmethod
    def get_result(self, batch_ref: str) -> Optional[ReconciliationResult]:
        """Return the stored result for a batch, if any."""
