"""Data access layer (repositories) for persistence operations.

This module provides repository classes for profiles, listings, match alerts,
notifications and schedules. Repositories encapsulate database operations and
return domain models rather than ORM models. They never commit: the caller's
``get_session()`` scope owns the transaction.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from property_matcher.domain.models import (
    ALLOWED_ALERT_TRANSITIONS,
    OPEN_ALERT_STATUSES,
    AlertStatus,
    Listing,
    ListingStatus,
    MatchAlert,
    Notification,
    RequirementProfile,
    Schedule,
)
from property_matcher.utils.timestamps import utc_now

from .exceptions import (
    DataIntegrityError,
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
)
from .schema import (
    ListingModel,
    MatchAlertModel,
    NotificationModel,
    RequirementProfileModel,
    ScheduleModel,
    _format_datetime,
)

logger = logging.getLogger(__name__)

_OPEN_STATUS_VALUES = [status.value for status in OPEN_ALERT_STATUSES]


class ProfileRepository:
    """Repository for requirement profiles."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, profile_id: str) -> Optional[RequirementProfile]:
        """Retrieve a profile by id, or None if it does not exist.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(RequirementProfileModel, profile_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving profile {profile_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve profile: {e}") from e

    def require(self, profile_id: str) -> RequirementProfile:
        """Retrieve a profile by id.

        Raises:
            RecordNotFoundError: If the profile does not exist
        """
        profile = self.get(profile_id)
        if profile is None:
            raise RecordNotFoundError(f"Profile {profile_id} not found")
        return profile

    def list(self, include_archived: bool = False) -> List[RequirementProfile]:
        """List profiles ordered by id."""
        try:
            stmt = select(RequirementProfileModel).order_by(RequirementProfileModel.id)
            if not include_archived:
                stmt = stmt.where(RequirementProfileModel.archived.is_(False))
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing profiles: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list profiles: {e}") from e

    def filter(self, with_criteria: bool = True, include_archived: bool = False) -> List[RequirementProfile]:
        """List profiles eligible for matching.

        Args:
            with_criteria: Keep only profiles that specify at least one criterion
            include_archived: Include soft-archived profiles
        """
        profiles = self.list(include_archived=include_archived)
        if with_criteria:
            profiles = [p for p in profiles if p.has_criteria()]
        return profiles

    def create(self, profile: RequirementProfile) -> RequirementProfile:
        """Insert a new profile.

        Raises:
            DataIntegrityError: If a profile with the same id exists
            PersistenceError: If database error occurs
        """
        try:
            if profile.updated_at is None:
                profile = profile.model_copy(update={"updated_at": utc_now()})
            model = RequirementProfileModel.from_domain(profile)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error creating profile {profile.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to create profile due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating profile {profile.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create profile: {e}") from e

    def update(self, profile: RequirementProfile) -> RequirementProfile:
        """Replace a stored profile's fields.

        Raises:
            RecordNotFoundError: If the profile does not exist
        """
        try:
            model = self.session.get(RequirementProfileModel, profile.id)
            if model is None:
                raise RecordNotFoundError(f"Profile {profile.id} not found")
            model.apply(profile.model_copy(update={"updated_at": utc_now()}))
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error updating profile {profile.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update profile: {e}") from e


class ListingRepository:
    """Repository for property listings."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, listing_id: str) -> Optional[Listing]:
        try:
            model = self.session.get(ListingModel, listing_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving listing {listing_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve listing: {e}") from e

    def get_many(self, listing_ids: Iterable[str]) -> List[Listing]:
        """Retrieve listings by id, in the order requested; unknown ids are skipped."""
        ids = list(dict.fromkeys(listing_ids))
        if not ids:
            return []
        try:
            stmt = select(ListingModel).where(ListingModel.id.in_(ids))
            found = {m.id: m.to_domain() for m in self.session.execute(stmt).scalars().all()}
            return [found[i] for i in ids if i in found]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve listings: {e}") from e

    def list(
        self,
        status: Optional[ListingStatus] = None,
        published_since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Listing]:
        """List listings, most recently published first (undated last), then by id.

        Args:
            status: Keep only listings with this status
            published_since: Keep only listings published at or after this instant
            limit: Maximum number of listings returned
        """
        try:
            stmt = select(ListingModel).order_by(
                ListingModel.published_at.is_(None),
                ListingModel.published_at.desc(),
                ListingModel.id.asc(),
            )
            if status is not None:
                stmt = stmt.where(ListingModel.status == ListingStatus(status).value)
            if published_since is not None:
                stmt = stmt.where(ListingModel.published_at >= _format_datetime(published_since))
            if limit is not None:
                stmt = stmt.limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing listings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list listings: {e}") from e

    def list_active(
        self, limit: Optional[int] = None, published_since: Optional[datetime] = None
    ) -> List[Listing]:
        return self.list(status=ListingStatus.ACTIVE, published_since=published_since, limit=limit)

    def create(self, listing: Listing) -> Listing:
        try:
            model = ListingModel.from_domain(listing)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.error(f"Integrity error creating listing {listing.id}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to create listing due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating listing {listing.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create listing: {e}") from e

    def update(self, listing: Listing) -> Listing:
        try:
            model = self.session.get(ListingModel, listing.id)
            if model is None:
                raise RecordNotFoundError(f"Listing {listing.id} not found")
            model.apply(listing)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error updating listing {listing.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update listing: {e}") from e


class MatchAlertRepository:
    """Repository for match alerts and their lifecycle."""

    def __init__(self, session: Session):
        self.session = session

    def _model(self, alert_id: int) -> MatchAlertModel:
        model = self.session.get(MatchAlertModel, alert_id)
        if model is None:
            raise RecordNotFoundError(f"Alert {alert_id} not found")
        return model

    def get(self, alert_id: int) -> Optional[MatchAlert]:
        try:
            model = self.session.get(MatchAlertModel, alert_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving alert {alert_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve alert: {e}") from e

    def get_by_key(self, idempotency_key: str) -> Optional[MatchAlert]:
        try:
            stmt = select(MatchAlertModel).where(MatchAlertModel.idempotency_key == idempotency_key)
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving alert by key: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve alert: {e}") from e

    def find_open(self, profile_id: str, listing_id: str) -> Optional[MatchAlert]:
        """Return the newest non-terminal alert for a pair, or None."""
        try:
            stmt = (
                select(MatchAlertModel)
                .where(
                    MatchAlertModel.profile_id == profile_id,
                    MatchAlertModel.listing_id == listing_id,
                    MatchAlertModel.status.in_(_OPEN_STATUS_VALUES),
                )
                .order_by(MatchAlertModel.id.desc())
                .limit(1)
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(
                f"Error finding open alert for {profile_id}/{listing_id}: {e}", exc_info=True
            )
            raise PersistenceError(f"Failed to find open alert: {e}") from e

    def was_dismissed(self, profile_id: str, listing_id: str) -> bool:
        """True if the handler has dismissed any alert for this pair."""
        try:
            stmt = select(func.count(MatchAlertModel.id)).where(
                MatchAlertModel.profile_id == profile_id,
                MatchAlertModel.listing_id == listing_id,
                MatchAlertModel.status == AlertStatus.DISMISSED.value,
            )
            return self.session.execute(stmt).scalar_one() > 0
        except SQLAlchemyError as e:
            logger.error(f"Error checking dismissed alerts: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check dismissed alerts: {e}") from e

    def list(
        self,
        profile_id: Optional[str] = None,
        listing_id: Optional[str] = None,
        status: Optional[AlertStatus] = None,
    ) -> List[MatchAlert]:
        """List alerts, newest first."""
        try:
            stmt = select(MatchAlertModel).order_by(MatchAlertModel.id.desc())
            if profile_id is not None:
                stmt = stmt.where(MatchAlertModel.profile_id == profile_id)
            if listing_id is not None:
                stmt = stmt.where(MatchAlertModel.listing_id == listing_id)
            if status is not None:
                stmt = stmt.where(MatchAlertModel.status == AlertStatus(status).value)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing alerts: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list alerts: {e}") from e

    def create(self, alert: MatchAlert) -> MatchAlert:
        """Insert a new alert inside a SAVEPOINT.

        A duplicate idempotency key rolls back only the savepoint, so the
        caller's transaction stays usable.

        Raises:
            DataIntegrityError: If an alert with the same idempotency key exists
            PersistenceError: If database error occurs
        """
        try:
            with self.session.begin_nested():
                model = MatchAlertModel.from_domain(alert)
                self.session.add(model)
                self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            logger.info(
                f"Alert with key {alert.idempotency_key} already exists",
                extra={
                    "event": "persistence.alert.duplicate_key",
                    "profile_id": alert.profile_id,
                    "listing_id": alert.listing_id,
                },
            )
            raise DataIntegrityError(f"Duplicate alert idempotency key: {alert.idempotency_key}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error creating alert: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create alert: {e}") from e

    def update_fields(self, alert_id: int, **fields: Any) -> MatchAlert:
        """Update score, verdicts, draft or notification fields of an alert.

        ``status`` cannot be changed here; use transition().
        Changes are flushed inside a SAVEPOINT so a failed update leaves the
        caller's transaction usable.

        Raises:
            RecordNotFoundError: If the alert does not exist
        """
        allowed = {
            "score", "verdicts", "assigned_handler", "notification_sent_at",
            "drafted_subject", "drafted_body",
        }
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update alert fields: {', '.join(sorted(unknown))}")

        try:
            model = self._model(alert_id)
            with self.session.begin_nested():
                for name, value in fields.items():
                    if name == "notification_sent_at":
                        value = _format_datetime(value)
                    setattr(model, name, value)
                model.updated_at = _format_datetime(utc_now())
                self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error updating alert {alert_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update alert: {e}") from e

    def transition(
        self, alert_id: int, new_status: AlertStatus, at: Optional[datetime] = None
    ) -> MatchAlert:
        """Move an alert along its lifecycle.

        Allowed moves:
            pending  -> notified | viewed | dismissed
            notified -> viewed | contacted | dismissed
            viewed   -> contacted | dismissed

        Raises:
            RecordNotFoundError: If the alert does not exist
            InvalidTransitionError: If the move is not allowed
        """
        new_status = AlertStatus(new_status)
        try:
            model = self._model(alert_id)
            current = AlertStatus(model.status)
            if new_status not in ALLOWED_ALERT_TRANSITIONS[current]:
                raise InvalidTransitionError(alert_id, current.value, new_status.value)

            now = at or utc_now()
            model.status = new_status.value
            model.updated_at = _format_datetime(now)
            if new_status == AlertStatus.NOTIFIED and model.notification_sent_at is None:
                model.notification_sent_at = _format_datetime(now)
            self.session.flush()

            logger.info(
                f"Alert {alert_id} moved {current.value} -> {new_status.value}",
                extra={
                    "event": "persistence.alert.transitioned",
                    "alert_id": alert_id,
                    "from_status": current.value,
                    "to_status": new_status.value,
                },
            )
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error transitioning alert {alert_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to transition alert: {e}") from e


class NotificationRepository:
    """Repository for handler notifications."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, notification: Notification) -> Notification:
        try:
            model = NotificationModel.from_domain(notification)
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error creating notification: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create notification: {e}") from e

    def list(
        self,
        recipient: Optional[str] = None,
        unread_only: bool = False,
        related_entity_id: Optional[str] = None,
    ) -> List[Notification]:
        """List notifications, newest first."""
        try:
            stmt = select(NotificationModel).order_by(NotificationModel.id.desc())
            if recipient is not None:
                stmt = stmt.where(NotificationModel.recipient == recipient)
            if unread_only:
                stmt = stmt.where(NotificationModel.read.is_(False))
            if related_entity_id is not None:
                stmt = stmt.where(NotificationModel.related_entity_id == related_entity_id)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list notifications: {e}") from e

    def mark_read(self, notification_id: int) -> Notification:
        try:
            model = self.session.get(NotificationModel, notification_id)
            if model is None:
                raise RecordNotFoundError(f"Notification {notification_id} not found")
            model.read = True
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error marking notification {notification_id} read: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update notification: {e}") from e


class ScheduleRepository:
    """Repository for recurring schedules."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, schedule_id: int) -> Optional[Schedule]:
        try:
            model = self.session.get(ScheduleModel, schedule_id)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving schedule {schedule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve schedule: {e}") from e

    def list(self, active: Optional[bool] = None, profile_id: Optional[str] = None) -> List[Schedule]:
        try:
            stmt = select(ScheduleModel).order_by(ScheduleModel.id)
            if active is not None:
                stmt = stmt.where(ScheduleModel.active.is_(active))
            if profile_id is not None:
                stmt = stmt.where(ScheduleModel.profile_id == profile_id)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing schedules: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list schedules: {e}") from e

    def due(self, now: datetime) -> List[Schedule]:
        """Active schedules whose next_run is at or before ``now``, earliest first."""
        try:
            stmt = (
                select(ScheduleModel)
                .where(
                    ScheduleModel.active.is_(True),
                    ScheduleModel.next_run.is_not(None),
                    ScheduleModel.next_run <= _format_datetime(now),
                )
                .order_by(ScheduleModel.next_run, ScheduleModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving due schedules: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve due schedules: {e}") from e

    def create(self, schedule: Schedule) -> Schedule:
        try:
            if schedule.created_at is None:
                schedule = schedule.model_copy(update={"created_at": utc_now()})
            model = ScheduleModel.from_domain(schedule)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error creating schedule: {e}", exc_info=True)
            raise PersistenceError(f"Failed to create schedule: {e}") from e

    def update(self, schedule: Schedule) -> Schedule:
        if schedule.id is None:
            raise RecordNotFoundError("Cannot update a schedule without an id")
        try:
            model = self.session.get(ScheduleModel, schedule.id)
            if model is None:
                raise RecordNotFoundError(f"Schedule {schedule.id} not found")
            model.apply(schedule)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error updating schedule {schedule.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update schedule: {e}") from e

    def delete(self, schedule_id: int) -> None:
        """Delete a schedule permanently.

        Raises:
            RecordNotFoundError: If the schedule does not exist
        """
        try:
            result = self.session.execute(delete(ScheduleModel).where(ScheduleModel.id == schedule_id))
            self.session.flush()
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Schedule {schedule_id} not found")
        except SQLAlchemyError as e:
            logger.error(f"Error deleting schedule {schedule_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete schedule: {e}") from e

