"""Payload builders for handler notifications and report e-mails."""

from typing import Dict, List, Mapping, Optional

from property_matcher.domain.models import Listing, NotificationPriority, RequirementProfile
from property_matcher.matching.models import MatchResult, RankingResult
from property_matcher.matching.utils import build_notification_payload
from property_matcher.utils.timestamps import format_timestamp

from .models import NotificationRequest

HIGH_PRIORITY_SCORE = 80


def build_handler_notification(
    profile: RequirementProfile,
    listing: Listing,
    result: MatchResult,
    alert_id: Optional[int] = None,
    trigger: Optional[str] = None,
) -> NotificationRequest:
    """Build the notification sent to a profile's assigned handler.

    The message carries the listing title, the score and the top verdict
    details. Priority is high from a score of 80.

    Raises:
        ValueError: If the profile has no assigned handler
    """
    if not profile.assigned_handler:
        raise ValueError(f"Profile {profile.id} has no assigned handler")

    payload = build_notification_payload(profile, listing, result)
    reasons = "; ".join(payload["justifications"])
    message = f"{payload['title']} ({result.score}% match) - {payload['price']}"
    if reasons:
        message = f"{message}. {reasons}"

    return NotificationRequest(
        recipient=profile.assigned_handler,
        title=f"New match for {payload['buyer_name']}",
        message=message,
        priority=(
            NotificationPriority.HIGH
            if result.score >= HIGH_PRIORITY_SCORE
            else NotificationPriority.MEDIUM
        ),
        related_entity_type="requirement_profile",
        related_entity_id=profile.id,
        metadata={
            "listing_id": listing.id,
            "match_score": result.score,
            "alert_id": alert_id,
            "trigger": trigger,
        },
    )


def build_report_context(
    profile: RequirementProfile,
    ranking: RankingResult,
    listings: Mapping[str, Listing],
    schedule_name: Optional[str] = None,
) -> Dict:
    """Build template context for a scheduled match report.

    Args:
        profile: Profile the report is about
        ranking: Ranked candidates for the profile
        listings: Listings by id (must contain every ranked candidate)
        schedule_name: Name of the schedule that produced the report

    Returns:
        Dictionary with keys:
        - buyer_name, profile_id, schedule_name
        - generated_at: ISO formatted ranking timestamp
        - min_score, match_count
        - matches: List of notification payloads, best first
    """
    matches: List[Dict] = [
        build_notification_payload(profile, listings[candidate.listing_id], candidate)
        for candidate in ranking.candidates
    ]
    return {
        "buyer_name": profile.name or profile.id,
        "profile_id": profile.id,
        "schedule_name": schedule_name or "Match report",
        "generated_at": format_timestamp(ranking.computed_at),
        "min_score": ranking.min_score,
        "match_count": len(matches),
        "matches": matches,
    }
