"""
Matching strategies for record reconciliation.
Each strategy implements one pass of the matcher.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..config import MatchingConfig
from ..models.record import MatchOutcome, MatchType, Record
from .scorer import COMPARED_FIELDS, Scorer


class MatchingStrategy(ABC):
    """Abstract base class for matching strategies."""

    @abstractmethod
    def find_match(
        self,
        uploaded: Record,
        system_records: list[Record],
    ) -> Optional[MatchOutcome]:
        """
        Find the system record an uploaded record matches under this strategy.

        Args:
            uploaded: Uploaded record to match
            system_records: System records in scan order

        Returns:
            Match outcome, or None if this strategy finds nothing
        """
        pass


class ExactMatchStrategy(MatchingStrategy):
    """
    Exact match strategy - identical transaction id, reference and amount,
    timestamps within the configured tolerance. First match in scan order wins.
    """

    def __init__(self, config: MatchingConfig):
        self.confidence = config.exact_match_threshold
        self.date_tolerance_seconds = config.exact_date_tolerance_seconds

    def is_exact_match(self, uploaded: Record, system: Record) -> bool:
        return (
            uploaded.transaction_id == system.transaction_id
            and uploaded.reference_number == system.reference_number
            and uploaded.amount == system.amount
            and abs((uploaded.date - system.date).total_seconds())
            < self.date_tolerance_seconds
        )

    def find_match(
        self,
        uploaded: Record,
        system_records: list[Record],
    ) -> Optional[MatchOutcome]:
        for system in system_records:
            if self.is_exact_match(uploaded, system):
                return MatchOutcome(
                    match_type=MatchType.EXACT,
                    system_record=system,
                    confidence_score=self.confidence,
                    matched_fields=list(COMPARED_FIELDS),
                    mismatched_fields=[],
                )
        return None


class PartialMatchStrategy(MatchingStrategy):
    """
    Partial match strategy - best weighted score at or above the threshold.
    """

    def __init__(self, config: MatchingConfig, scorer: Optional[Scorer] = None):
        self.threshold = config.partial_match_threshold
        self.scorer = scorer or Scorer(config)

    def find_match(
        self,
        uploaded: Record,
        system_records: list[Record],
    ) -> Optional[MatchOutcome]:
        best_match: Optional[Record] = None
        best_score = 0.0

        for system in system_records:
            score = self.scorer.score(uploaded, system)
            # Strict comparison keeps the first record to reach a score
            if score >= self.threshold and (best_match is None or score > best_score):
                best_match = system
                best_score = score

        if best_match is None:
            return None

        return MatchOutcome(
            match_type=MatchType.PARTIAL,
            system_record=best_match,
            confidence_score=best_score,
            matched_fields=self.scorer.matched_fields(uploaded, best_match),
            mismatched_fields=self.scorer.mismatched_fields(uploaded, best_match),
        )
