"""Matching engine and its components."""

from .accuracy import AccuracyAggregator, calculate_accuracy
from .duplicates import DuplicateDetector
from .engine import ReconciliationEngine
from .matcher import RecordMatcher
from .scorer import Scorer, amount_variance
from .strategies import ExactMatchStrategy, MatchingStrategy, PartialMatchStrategy

__all__ = [
    "AccuracyAggregator",
    "calculate_accuracy",
    "DuplicateDetector",
    "ReconciliationEngine",
    "RecordMatcher",
    "Scorer",
    "amount_variance",
    "ExactMatchStrategy",
    "MatchingStrategy",
    "PartialMatchStrategy",
]
