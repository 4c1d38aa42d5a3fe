"""Handler notification service.

NotificationService is the notification collaborator used by the action
dispatcher: it validates a NotificationRequest, stores it as a Notification
record in the caller's session and returns an acknowledgement.
"""

import logging
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from property_matcher.domain.models import Notification
from property_matcher.logging import get_logger
from property_matcher.persistence.exceptions import PersistenceError
from property_matcher.persistence.repositories import NotificationRepository
from property_matcher.utils.text import truncate_text
from property_matcher.utils.timestamps import utc_now

from .models import NotificationAck, NotificationError, NotificationRequest

logger = get_logger(__name__, component="notification")

MAX_TITLE_LENGTH = 255


class NotificationService:
    """Stores notifications addressed to handlers.

    The service operates within the caller's database transaction and
    does not commit changes itself.
    """

    def __init__(
        self,
        notification_repo: NotificationRepository,
        logger_instance: Optional[logging.Logger] = None,
    ):
        self.notification_repo = notification_repo
        self.logger = logger_instance or logger

    def notify(self, request: NotificationRequest) -> NotificationAck:
        """Deliver one notification.

        Args:
            request: Notification to deliver

        Returns:
            NotificationAck with the stored notification id

        Raises:
            NotificationError: If the recipient is invalid or storage fails
        """
        recipient = self._validate_recipient(request.recipient)

        notification = Notification(
            title=truncate_text(request.title.strip(), max_length=MAX_TITLE_LENGTH),
            message=request.message,
            recipient=recipient,
            priority=request.priority,
            related_entity_type=request.related_entity_type,
            related_entity_id=request.related_entity_id,
            metadata=dict(request.metadata),
            created_at=utc_now(),
        )

        try:
            stored = self.notification_repo.create(notification)
        except PersistenceError as e:
            self.logger.error(
                f"Failed to store notification for {recipient}: {e}",
                extra={"event": "notification.store.failed", "recipient": recipient},
            )
            raise NotificationError(f"Failed to store notification: {e}") from e

        self.logger.info(
            f"Notification stored for {recipient}: {notification.title}",
            extra={
                "event": "notification.stored",
                "notification_id": stored.id,
                "recipient": recipient,
                "priority": getattr(stored.priority, "value", stored.priority),
            },
        )
        return NotificationAck(
            notification_id=stored.id, recipient=recipient, created_at=stored.created_at
        )

    @staticmethod
    def _validate_recipient(recipient: Optional[str]) -> str:
        if not recipient or not recipient.strip():
            raise NotificationError("Notification recipient is required")
        try:
            return validate_email(recipient.strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise NotificationError(f"Invalid notification recipient '{recipient}': {e}") from e
