"""Data models and exceptions for the notification service.

This module defines request/result types and custom exceptions used by the
handler notification channel and the report e-mail channel.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from property_matcher.domain.models import NotificationPriority


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when template rendering fails due to configuration or missing variables."""

    pass


class SMTPDeliveryError(NotificationError):
    """Raised when SMTP delivery fails."""

    pass


@dataclass
class NotificationRequest:
    """A notification to deliver to one handler.

    Attributes:
        recipient: Handler e-mail
        title: Short headline
        message: Body text
        priority: high, medium or low
        related_entity_type: Entity the notification refers to (e.g. "requirement_profile")
        related_entity_id: Id of that entity
        metadata: Extra structured data (listing id, score, alert id, ...)
    """

    recipient: str
    title: str
    message: str
    related_entity_type: str
    related_entity_id: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationAck:
    """Acknowledgement returned once a notification is stored."""

    notification_id: int
    recipient: str
    created_at: datetime


@dataclass
class ReportDeliveryResult:
    """Result of attempting to e-mail a match report.

    Attributes:
        profile_id: Profile the report is about
        recipients: Addresses the report was sent to
        attempts: Number of send attempts made
        status: Outcome status (sent, skipped, failed)
        error: Optional error message if delivery failed
    """

    profile_id: str
    recipients: List[str]
    attempts: int
    status: str  # "sent", "skipped", "failed"
    error: Optional[str] = None

    def is_success(self) -> bool:
        return self.status == "sent"
