"""Score aggregation and candidate ranking.

The aggregator turns an Evaluation into a 0-100 integer score:

    score = round_half_up(100 * sum(contributions) / sum(weights))

where both sums cover only the evaluated criteria. Rounding happens once, on
the final percentage; contributions are kept exact until then.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from property_matcher.config.models import AppConfig
from property_matcher.domain.models import Listing, RequirementProfile
from property_matcher.utils.timestamps import ensure_utc, utc_now

from .engine import CriteriaEvaluator
from .exceptions import InvalidMatchInputError, MatchingError
from .models import Evaluation, MatchResult, PairOutcome, RankingResult
from .regions import RegionDirectory

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero (72.5 -> 73)."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class ScoreAggregator:
    """Aggregates criterion verdicts into a single compatibility score."""

    def __init__(self, evaluator: Optional[CriteriaEvaluator] = None, neutral_score: Optional[int] = None):
        """Initialize ScoreAggregator.

        Args:
            evaluator: Criteria evaluator (defaults to the default weight table)
            neutral_score: Score when no criterion was evaluated (defaults to
                the evaluator's ScoringConfig.neutral_score)
        """
        self.evaluator = evaluator or CriteriaEvaluator()
        self.neutral_score = (
            neutral_score if neutral_score is not None else self.evaluator.tolerances.neutral_score
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> "ScoreAggregator":
        evaluator = CriteriaEvaluator(
            weights=config.weights,
            tolerances=config.scoring,
            regions=RegionDirectory(config.regions),
        )
        return cls(evaluator, neutral_score=config.scoring.neutral_score)

    def score_evaluation(self, evaluation: Evaluation) -> int:
        total = evaluation.total_weight
        if total <= 0:
            return self.neutral_score
        score = round_half_up(_HUNDRED * evaluation.achieved / total)
        return max(0, min(100, score))

    def score(self, profile: RequirementProfile, listing: Listing) -> int:
        """Compute the 0-100 score for one pair."""
        return self.score_evaluation(self.evaluator.evaluate(profile, listing))

    def match(
        self,
        profile: RequirementProfile,
        listing: Listing,
        computed_at: Optional[datetime] = None,
    ) -> MatchResult:
        """Evaluate and score one pair.

        Raises:
            InvalidMatchInputError: If either input is malformed
        """
        evaluation = self.evaluator.evaluate(profile, listing)
        return MatchResult(
            profile_id=evaluation.profile_id,
            listing_id=evaluation.listing_id,
            score=self.score_evaluation(evaluation),
            verdicts=list(evaluation.verdicts),
            computed_at=ensure_utc(computed_at) or utc_now(),
            listing_published_at=listing.published_at,
        )

    def score_batch(
        self,
        profile: RequirementProfile,
        listings: Iterable[Listing],
        computed_at: Optional[datetime] = None,
    ) -> List[PairOutcome]:
        """Score many pairs, isolating each pair's failure.

        Returns:
            One PairOutcome per listing, in input order
        """
        computed_at = ensure_utc(computed_at) or utc_now()
        outcomes = []
        for listing in listings:
            listing_id = getattr(listing, "id", None) or "<unknown>"
            try:
                outcomes.append(
                    PairOutcome(listing_id=listing_id, result=self.match(profile, listing, computed_at))
                )
            except (MatchingError, ArithmeticError, ValueError, TypeError, AttributeError) as e:
                logger.warning(
                    f"Failed to score listing {listing_id}: {e}",
                    extra={
                        "event": "matching.pair.failed",
                        "profile_id": getattr(profile, "id", None),
                        "listing_id": listing_id,
                        "error_type": type(e).__name__,
                    },
                )
                outcomes.append(PairOutcome(listing_id=listing_id, error=f"{type(e).__name__}: {e}"))
        return outcomes


def _recency_key(published_at: Optional[datetime]):
    """Sort key putting the most recent first and undated last."""
    if published_at is None:
        return (1, 0.0)
    return (0, -(ensure_utc(published_at) - _EPOCH).total_seconds())


def select_candidates(listings: Iterable[Listing], max_evaluated: Optional[int] = None) -> List[Listing]:
    """Active listings in evaluation order, capped at ``max_evaluated``.

    Order is most recently published first, then id. Duplicate ids keep the
    first occurrence.
    """
    seen = set()
    active = []
    for listing in listings:
        if listing is None or not listing.is_active or listing.id in seen:
            continue
        seen.add(listing.id)
        active.append(listing)

    active.sort(key=lambda l: (_recency_key(l.published_at), l.id))
    if max_evaluated is not None:
        active = active[:max_evaluated]
    return active


def rank_candidates(
    aggregator: ScoreAggregator,
    profile: RequirementProfile,
    listings: Iterable[Listing],
    min_score: int,
    limit: int = 5,
    max_evaluated: Optional[int] = None,
    computed_at: Optional[datetime] = None,
) -> RankingResult:
    """Rank active listings for a profile.

    Candidates scoring at least ``min_score`` are sorted by score descending,
    then publication date descending (undated last), then listing id, and
    truncated to ``limit``. Identical inputs, including ``computed_at``,
    always produce an identical result.

    Args:
        aggregator: Score aggregator to use
        profile: Profile to rank for
        listings: Candidate listings (inactive ones are ignored)
        min_score: Inclusive score floor
        limit: Maximum candidates returned
        max_evaluated: Cap on active listings evaluated
        computed_at: Timestamp stamped on every result

    Returns:
        RankingResult with candidates and per-pair failures

    Raises:
        InvalidMatchInputError: If the profile is missing or the bounds are invalid
    """
    if profile is None or not getattr(profile, "id", None):
        raise InvalidMatchInputError("Profile is required for ranking")
    if not 0 <= min_score <= 100:
        raise InvalidMatchInputError(f"min_score must be between 0 and 100, got {min_score}")
    if limit < 1:
        raise InvalidMatchInputError(f"limit must be at least 1, got {limit}")
    if max_evaluated is not None and max_evaluated < 0:
        raise InvalidMatchInputError(f"max_evaluated cannot be negative, got {max_evaluated}")

    computed_at = ensure_utc(computed_at) or utc_now()
    candidates = select_candidates(listings, max_evaluated)
    outcomes = aggregator.score_batch(profile, candidates, computed_at)

    qualifying = []
    failures = []
    below = 0
    for outcome in outcomes:
        if not outcome.ok:
            failures.append(outcome)
        elif outcome.result.score >= min_score:
            qualifying.append(outcome.result)
        else:
            below += 1

    qualifying.sort(
        key=lambda r: (-r.score, _recency_key(r.listing_published_at), r.listing_id)
    )

    result = RankingResult(
        profile_id=profile.id,
        min_score=min_score,
        limit=limit,
        computed_at=computed_at,
        candidates=qualifying[:limit],
        evaluated=len(candidates),
        below_threshold=below,
        failures=failures,
    )

    logger.debug(
        f"Ranked {len(result.candidates)} candidates for profile {profile.id}",
        extra={
            "event": "matching.ranked",
            "profile_id": profile.id,
            "evaluated": result.evaluated,
            "qualifying": len(qualifying),
            "failed": len(failures),
        },
    )
    return result
