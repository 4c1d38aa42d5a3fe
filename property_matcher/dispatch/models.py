"""Result types for the action dispatcher."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DispatchStatus(str, Enum):
    """What the dispatcher did with one match."""

    BELOW_THRESHOLD = "below_threshold"
    ALREADY_ALERTED = "already_alerted"
    SUPPRESSED = "suppressed"
    CREATED = "created"
    NOTIFIED = "notified"


@dataclass
class DraftedMessage:
    """Subject and body of a drafted outbound message."""

    subject: str
    body: str


@dataclass
class DispatchOutcome:
    """Outcome of dispatching one scored match.

    Attributes:
        profile_id: Matched profile
        listing_id: Matched listing
        score: Score that drove the decision
        status: DispatchStatus value
        alert_id: Alert created or found, if any
        dispatched: A new alert was created by this call
        notified: The assigned handler was notified
        notification_failed: Notifying the handler was attempted and failed
        message_drafted: A drafted message is stored on the alert
        message_unavailable: Drafting was requested but failed or timed out
        draft_pending: Drafting is due but deferred to the caller
        draft: The drafted message, when available
        error: Collaborator error message (notification or drafting)
    """

    profile_id: str
    listing_id: str
    score: int
    status: DispatchStatus
    alert_id: Optional[int] = None
    dispatched: bool = False
    notified: bool = False
    notification_failed: bool = False
    message_drafted: bool = False
    message_unavailable: bool = False
    draft_pending: bool = False
    draft: Optional[DraftedMessage] = None
    error: Optional[str] = None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
