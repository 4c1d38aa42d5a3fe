"""Matching engine: criteria evaluation, scoring and ranking.

This module provides:
- CriteriaEvaluator: Grades each specified criterion of a profile against a listing
- ScoreAggregator: Turns verdicts into a 0-100 score
- rank_candidates: Filters and orders listings for one profile
- RegionDirectory: Region lookup for partial location credit
- Utility functions for building notification payloads
"""

from .engine import CRITERIA_ORDER, CriteriaEvaluator
from .exceptions import InvalidMatchInputError, MatchingError
from .models import (
    CriterionVerdict,
    Evaluation,
    MatchResult,
    PairOutcome,
    RankingResult,
    VerdictStatus,
)
from .regions import RegionDirectory
from .scoring import ScoreAggregator, rank_candidates, round_half_up, select_candidates
from .utils import build_notification_payload, top_justifications

__all__ = [
    "CRITERIA_ORDER",
    "CriteriaEvaluator",
    "ScoreAggregator",
    "rank_candidates",
    "select_candidates",
    "round_half_up",
    "RegionDirectory",
    "CriterionVerdict",
    "Evaluation",
    "MatchResult",
    "PairOutcome",
    "RankingResult",
    "VerdictStatus",
    "MatchingError",
    "InvalidMatchInputError",
    "build_notification_payload",
    "top_justifications",
]
