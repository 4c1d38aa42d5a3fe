"""Utility functions for preparing match results for downstream consumers.

This module provides helpers for ordering verdict justifications and
building the notification payload shared by alerts and report e-mails.
"""

from typing import Dict, List, Sequence

from property_matcher.domain.models import Listing, RequirementProfile
from property_matcher.utils.text import format_amount
from property_matcher.utils.timestamps import format_timestamp

from .models import CriterionVerdict, MatchResult, VerdictStatus


def top_justifications(verdicts: Sequence[CriterionVerdict], count: int = 3) -> List[str]:
    """Pick the most informative verdict details.

    Verdicts are ordered by contribution (highest first); ties keep the
    evaluation order. Misses only appear when fewer than ``count`` criteria
    earned points.
    """
    ranked = sorted(
        enumerate(verdicts),
        key=lambda item: (item[1].status == VerdictStatus.MISS, -item[1].contribution, item[0]),
    )
    return [verdict.detail for _, verdict in ranked[:count]]


def build_notification_payload(
    profile: RequirementProfile, listing: Listing, match_result: MatchResult
) -> Dict:
    """Build a notification payload from a match.

    Args:
        profile: The matched requirement profile
        listing: The matched listing
        match_result: Scored result for the pair

    Returns:
        Dict with keys:
        - profile_id / buyer_name: Buyer identity
        - listing_id / title / location / price: Listing summary
        - score: Integer score
        - justifications: Top verdict details
        - verdicts: All verdicts as dicts
        - published_at: ISO formatted publication date (or None)
    """
    return {
        "profile_id": profile.id,
        "buyer_name": profile.name or profile.id,
        "listing_id": listing.id,
        "title": listing.title or listing.id,
        "location": listing.display_location() or "n/a",
        "price": format_amount(listing.price),
        "property_type": listing.property_type,
        "bedrooms": listing.bedrooms,
        "score": match_result.score,
        "justifications": top_justifications(match_result.verdicts),
        "verdicts": match_result.verdicts_as_dicts(),
        "published_at": format_timestamp(listing.published_at),
    }

