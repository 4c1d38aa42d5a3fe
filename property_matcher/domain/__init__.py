"""Domain models for the property matching engine."""

from .models import (
    ALLOWED_ALERT_TRANSITIONS,
    OPEN_ALERT_STATUSES,
    AlertStatus,
    Frequency,
    Listing,
    ListingIntent,
    ListingStatus,
    MatchAlert,
    Notification,
    NotificationPriority,
    OwnerType,
    RequirementProfile,
    Schedule,
)

__all__ = [
    "RequirementProfile",
    "Listing",
    "MatchAlert",
    "Notification",
    "Schedule",
    "ListingIntent",
    "ListingStatus",
    "OwnerType",
    "AlertStatus",
    "NotificationPriority",
    "Frequency",
    "OPEN_ALERT_STATUSES",
    "ALLOWED_ALERT_TRANSITIONS",
]
