"""Two-pass matcher: exact first, then best partial above the threshold."""

from typing import Optional
import logging

from ..config import MatchingConfig
from ..models.record import MatchOutcome, MatchType, Record
from .scorer import Scorer
from .strategies import ExactMatchStrategy, MatchingStrategy, PartialMatchStrategy

logger = logging.getLogger(__name__)


class RecordMatcher:
    """
    Matches uploaded records against the system partition.

    The system records are ordered once per batch with ``order_system_records``
    so that first-match-wins selection does not depend on store retrieval order.
    """

    def __init__(self, config: MatchingConfig, scorer: Optional[Scorer] = None):
        self.config = config
        self.scorer = scorer or Scorer(config)
        self.strategies: list[tuple[str, MatchingStrategy]] = [
            ("exact", ExactMatchStrategy(config)),
            ("partial", PartialMatchStrategy(config, self.scorer)),
        ]

    def order_system_records(self, system_records: list[Record]) -> list[Record]:
        """Return system records in the deterministic scan order."""
        if self.config.tie_break_key == "retrieval_order":
            return list(system_records)
        return sorted(system_records, key=lambda r: r.id)

    def match(self, uploaded: Record, system_records: list[Record]) -> MatchOutcome:
        """
        Match one uploaded record.

        Args:
            uploaded: Uploaded record
            system_records: System records, already in scan order

        Returns:
            Outcome of type exact, partial or none
        """
        for pass_name, strategy in self.strategies:
            outcome = strategy.find_match(uploaded, system_records)
            if outcome is not None:
                logger.debug(
                    f"Record {uploaded.id}: {pass_name} match with "
                    f"{outcome.system_record.id} ({outcome.confidence_score})"
                )
                return outcome

        return MatchOutcome(match_type=MatchType.NONE)
