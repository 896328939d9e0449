"""
Weighted field comparison between an uploaded record and a system record.

The score is the sum of per-field credits, weighted so that a perfect
agreement on every field yields 100.
"""

from decimal import Decimal
from typing import Optional

from ..config import MatchingConfig
from ..models.record import FieldMismatch, Record

COMPARED_FIELDS = ("transaction_id", "reference_number", "amount", "date")

# Rounding keeps Decimal-to-float conversion from leaking noise into ties
SCORE_PRECISION = 4


def amount_variance(uploaded: Record, system: Record) -> tuple[Decimal, Optional[float]]:
    """
    Absolute and percentage amount difference relative to the system amount.

    The percentage is None when the system amount is zero, which earns no
    amount credit.
    """
    variance = abs(uploaded.amount - system.amount)
    if system.amount == 0:
        return variance, None
    return variance, float(variance / system.amount * 100)


def same_day(uploaded: Record, system: Record) -> bool:
    return uploaded.date.date() == system.date.date()


class Scorer:
    """Deterministic weighted scorer used to rank partial-match candidates."""

    def __init__(self, config: MatchingConfig):
        self.config = config
        self.weights = config.field_weights

    def score(self, uploaded: Record, system: Record) -> float:
        """
        Score agreement between two records.

        Args:
            uploaded: Uploaded record being reconciled
            system: Candidate system record

        Returns:
            Score between 0 and 100
        """
        score = 0.0

        if uploaded.transaction_id == system.transaction_id:
            score += self.weights.transaction_id

        if uploaded.reference_number == system.reference_number:
            score += self.weights.reference_number

        score += self._amount_credit(uploaded, system)

        if same_day(uploaded, system):
            score += self.weights.date

        return round(min(100.0, score), SCORE_PRECISION)

    def _amount_credit(self, uploaded: Record, system: Record) -> float:
        _, percent = amount_variance(uploaded, system)
        if percent is None or percent > self.config.amount_variance_percentage:
            return 0.0
        return self.weights.amount * (1 - percent / 100)

    def matched_fields(self, uploaded: Record, system: Record) -> list[str]:
        """Fields that earned full credit."""
        matched: list[str] = []
        if uploaded.transaction_id == system.transaction_id:
            matched.append("transaction_id")
        if uploaded.reference_number == system.reference_number:
            matched.append("reference_number")
        if uploaded.amount == system.amount:
            matched.append("amount")
        if same_day(uploaded, system):
            matched.append("date")
        return matched

    def mismatched_fields(self, uploaded: Record, system: Record) -> list[FieldMismatch]:
        """Fields that did not earn full credit, with both raw values."""
        mismatched: list[FieldMismatch] = []

        if uploaded.transaction_id != system.transaction_id:
            mismatched.append(
                FieldMismatch(
                    field="transaction_id",
                    uploaded_value=uploaded.transaction_id,
                    system_value=system.transaction_id,
                )
            )

        if uploaded.reference_number != system.reference_number:
            mismatched.append(
                FieldMismatch(
                    field="reference_number",
                    uploaded_value=uploaded.reference_number,
                    system_value=system.reference_number,
                )
            )

        if uploaded.amount != system.amount:
            variance, percent = amount_variance(uploaded, system)
            mismatched.append(
                FieldMismatch(
                    field="amount",
                    uploaded_value=uploaded.amount,
                    system_value=system.amount,
                    variance=variance,
                    variance_percentage=percent,
                )
            )

        if not same_day(uploaded, system):
            mismatched.append(
                FieldMismatch(
                    field="date",
                    uploaded_value=uploaded.date,
                    system_value=system.date,
                )
            )

        return mismatched
