"""Reduction of per-record outcomes into a reconciliation summary."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from ..models.record import DuplicateGroup, MatchOutcome, MatchType, ReconciliationSummary

EXACT_WEIGHT = Decimal("1.0")
PARTIAL_WEIGHT = Decimal("0.5")


def calculate_accuracy(matched: int, partially_matched: int, unmatched: int) -> int:
    """
    Weighted accuracy percentage over processed records.

    Exact matches count fully, partial matches half. A batch where nothing
    was processed reports 0.
    """
    processed = matched + partially_matched + unmatched
    if processed == 0:
        return 0
    weighted = matched * EXACT_WEIGHT + partially_matched * PARTIAL_WEIGHT
    percentage = weighted / processed * 100
    return int(percentage.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class AccuracyAggregator:
    """Builds the summary for a batch from matcher outcomes."""

    def summarize(
        self,
        outcomes: Iterable[MatchOutcome],
        duplicate_groups: dict[str, DuplicateGroup],
        total_records: int,
    ) -> ReconciliationSummary:
        """
        Count outcomes and compute accuracy.

        Args:
            outcomes: One outcome per non-duplicate uploaded record
            duplicate_groups: Groups found by the duplicate detector
            total_records: Number of uploaded records in the batch

        Returns:
            Summary whose outcome counts add up to ``total_records``
        """
        counts = {match_type: 0 for match_type in MatchType}
        for outcome in outcomes:
            counts[outcome.match_type] += 1

        duplicates = sum(group.count for group in duplicate_groups.values())
        matched = counts[MatchType.EXACT]
        partially_matched = counts[MatchType.PARTIAL]
        unmatched = counts[MatchType.NONE]

        if matched + partially_matched + unmatched + duplicates != total_records:
            raise ValueError(
                f"Outcome counts do not cover the batch: "
                f"{matched}+{partially_matched}+{unmatched}+{duplicates} "
                f"!= {total_records}"
            )

        return ReconciliationSummary(
            total_records=total_records,
            matched=matched,
            partially_matched=partially_matched,
            unmatched=unmatched,
            duplicates=duplicates,
            duplicate_group_count=len(duplicate_groups),
            accuracy_percentage=calculate_accuracy(matched, partially_matched, unmatched),
        )
