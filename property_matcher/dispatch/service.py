"""Action dispatcher: turns scored matches into alerts, notifications and drafts.

The dispatcher operates within the caller's database transaction and does
not commit changes itself. With ``defer_drafting`` the text-generation call is
left to the caller, so it can run after that transaction has committed.
"""

import logging
from typing import Callable, Optional, Protocol

from property_matcher.config.models import DispatchThresholds
from property_matcher.domain.models import AlertStatus, Listing, MatchAlert, RequirementProfile
from property_matcher.logging import get_logger
from property_matcher.matching.models import MatchResult
from property_matcher.notifications.models import NotificationAck, NotificationError, NotificationRequest
from property_matcher.notifications.payloads import build_handler_notification
from property_matcher.persistence.exceptions import DataIntegrityError, PersistenceError
from property_matcher.persistence.repositories import MatchAlertRepository
from property_matcher.utils.hashing import compute_alert_key
from property_matcher.utils.timestamps import utc_now

from .drafting import MessageDrafter
from .exceptions import DispatchError, DraftingError
from .models import DispatchOutcome, DispatchStatus, DraftedMessage

logger = get_logger(__name__, component="dispatch")


class Notifier(Protocol):
    def notify(self, request: NotificationRequest) -> NotificationAck: ...


class ActionDispatcher:
    """Decides and performs the follow-up actions for one scored match.

    score < low              -> nothing
    low <= score             -> one open alert per pair, handler notified once
    high <= score            -> a drafted message is requested as well
    """

    def __init__(
        self,
        alert_repo: MatchAlertRepository,
        notifier: Optional[Notifier] = None,
        drafter: Optional[MessageDrafter] = None,
        thresholds: Optional[DispatchThresholds] = None,
        notify_handler: bool = True,
        draft_messages: bool = True,
        suppress_dismissed: bool = True,
        defer_drafting: bool = False,
        clock: Callable = utc_now,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize ActionDispatcher.

        Args:
            alert_repo: Alert repository bound to the caller's session
            notifier: Notification collaborator (notifications disabled if None)
            drafter: Message drafter (drafting disabled if None)
            thresholds: Low/high score thresholds (defaults 60/70)
            notify_handler: Notify the profile's assigned handler on new alerts
            draft_messages: Request drafted messages above the high threshold
            suppress_dismissed: Skip pairs the handler has already dismissed
            defer_drafting: Only flag drafts as pending; the caller drafts later
                with request_draft and store_draft
            clock: Returns the current UTC time
            logger_instance: Logger instance (uses module logger if None)
        """
        self.alert_repo = alert_repo
        self.notifier = notifier
        self.drafter = drafter
        self.thresholds = thresholds or DispatchThresholds()
        self.notify_handler = notify_handler
        self.draft_messages = draft_messages
        self.suppress_dismissed = suppress_dismissed
        self.defer_drafting = defer_drafting
        self.clock = clock
        self.logger = logger_instance or logger

    def dispatch(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        batch_id: str,
        trigger: str = "ingestion",
    ) -> DispatchOutcome:
        """Dispatch one scored match.

        Collaborator failures (notification, drafting) are reported on the
        outcome and never undo the alert.

        Raises:
            DispatchError: If the result does not belong to this pair or batch_id is blank
            PersistenceError: If the alert store fails
        """
        if result.profile_id != profile.id or result.listing_id != listing.id:
            raise DispatchError(
                f"Result for {result.profile_id}/{result.listing_id} "
                f"does not belong to {profile.id}/{listing.id}"
            )
        if not batch_id or not batch_id.strip():
            raise DispatchError("batch_id is required")

        outcome = DispatchOutcome(
            profile_id=profile.id,
            listing_id=listing.id,
            score=result.score,
            status=DispatchStatus.BELOW_THRESHOLD,
        )

        if result.score < self.thresholds.low:
            return outcome

        existing = self.alert_repo.find_open(profile.id, listing.id)
        if existing is not None:
            self._refresh(existing, result)
            outcome.status = DispatchStatus.ALREADY_ALERTED
            outcome.alert_id = existing.id
            return outcome

        if self.suppress_dismissed and self.alert_repo.was_dismissed(profile.id, listing.id):
            self.logger.info(
                f"Skipping dismissed pair {profile.id}/{listing.id}",
                extra={"event": "dispatch.alert.suppressed", "listing_id": listing.id},
            )
            outcome.status = DispatchStatus.SUPPRESSED
            return outcome

        alert = self._create_alert(profile, listing, result, batch_id, trigger)
        if alert is None:
            winner = self.alert_repo.get_by_key(compute_alert_key(profile.id, listing.id, batch_id))
            outcome.status = DispatchStatus.ALREADY_ALERTED
            outcome.alert_id = winner.id if winner else None
            return outcome

        outcome.status = DispatchStatus.CREATED
        outcome.alert_id = alert.id
        outcome.dispatched = True

        if self.notify_handler and self.notifier is not None and profile.assigned_handler:
            self._notify(profile, listing, result, alert, trigger, outcome)

        if result.score >= self.thresholds.high and self.draft_messages and self.drafter is not None:
            if self.defer_drafting:
                outcome.draft_pending = True
            else:
                self.complete_draft(profile, listing, result, outcome)

        return outcome

    def _refresh(self, alert: MatchAlert, result: MatchResult) -> None:
        verdicts = result.verdicts_as_dicts()
        if alert.score == result.score and alert.verdicts == verdicts:
            return
        self.alert_repo.update_fields(alert.id, score=result.score, verdicts=verdicts)
        self.logger.info(
            f"Alert {alert.id} rescored {alert.score} -> {result.score}",
            extra={"event": "dispatch.alert.rescored", "alert_id": alert.id},
        )

    def _create_alert(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        batch_id: str,
        trigger: str,
    ) -> Optional[MatchAlert]:
        """Insert a pending alert; returns None when another run won the race."""
        now = self.clock()
        alert = MatchAlert(
            profile_id=profile.id,
            listing_id=listing.id,
            batch_id=batch_id,
            idempotency_key=compute_alert_key(profile.id, listing.id, batch_id),
            score=result.score,
            verdicts=result.verdicts_as_dicts(),
            status=AlertStatus.PENDING,
            trigger=trigger,
            assigned_handler=profile.assigned_handler,
            created_at=now,
            updated_at=now,
        )
        try:
            created = self.alert_repo.create(alert)
        except DataIntegrityError:
            return None

        self.logger.info(
            f"Alert {created.id} created for {profile.id}/{listing.id} (score {result.score})",
            extra={
                "event": "dispatch.alert.created",
                "alert_id": created.id,
                "listing_id": listing.id,
                "score": result.score,
                "trigger": trigger,
            },
        )
        return created

    def _notify(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        alert: MatchAlert,
        trigger: str,
        outcome: DispatchOutcome,
    ) -> None:
        request = build_handler_notification(profile, listing, result, alert_id=alert.id, trigger=trigger)
        try:
            self.notifier.notify(request)
        except NotificationError as e:
            self.logger.warning(
                f"Notification for alert {alert.id} failed: {e}",
                extra={"event": "dispatch.notify.failed", "alert_id": alert.id},
            )
            outcome.notification_failed = True
            outcome.error = str(e)
            return

        self.alert_repo.transition(alert.id, AlertStatus.NOTIFIED, at=self.clock())
        outcome.notified = True
        outcome.status = DispatchStatus.NOTIFIED

    def complete_draft(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        outcome: DispatchOutcome,
    ) -> None:
        """Request a drafted message and store it on the outcome's alert."""
        message = self.request_draft(profile, listing, result, outcome)
        if message is not None:
            self.store_draft(outcome, message)

    def request_draft(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        outcome: DispatchOutcome,
    ) -> Optional[DraftedMessage]:
        """Ask the drafter for a message; touches no database state.

        A failed or timed-out draft marks the outcome and returns None.
        """
        outcome.draft_pending = False
        try:
            return self.drafter.draft(profile, listing, result)
        except DraftingError as e:
            outcome.message_unavailable = True
            outcome.error = outcome.error or str(e)
            return None

    def store_draft(self, outcome: DispatchOutcome, message: DraftedMessage) -> None:
        try:
            self.alert_repo.update_fields(
                outcome.alert_id, drafted_subject=message.subject, drafted_body=message.body
            )
        except PersistenceError as e:
            self.logger.warning(
                f"Could not store drafted message on alert {outcome.alert_id}: {e}",
                extra={"event": "dispatch.draft.store_failed", "alert_id": outcome.alert_id},
            )
            outcome.message_unavailable = True
            outcome.error = outcome.error or str(e)
            return

        outcome.message_drafted = True
        outcome.draft = message
        self.logger.info(
            f"Drafted message stored on alert {outcome.alert_id}",
            extra={"event": "dispatch.draft.stored", "alert_id": outcome.alert_id},
        )
