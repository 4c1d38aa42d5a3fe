"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the database schema and provides
conversion methods between ORM models and domain models. Timestamps are stored
as fixed-width ISO 8601 UTC strings, so lexical order equals time order.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, Float, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from property_matcher.domain.models import (
    Listing,
    MatchAlert,
    Notification,
    RequirementProfile,
    Schedule,
)
from property_matcher.utils.timestamps import ensure_utc, parse_iso_datetime

logger = logging.getLogger(__name__)

Base = declarative_base()


class RequirementProfileModel(Base):
    """ORM model for requirement_profiles table."""

    __tablename__ = "requirement_profiles"

    id = Column(String(64), primary_key=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True)
    owner_type = Column(String(20), nullable=False, default="contact")
    owner_id = Column(String(64), nullable=True)
    assigned_handler = Column(String(255), nullable=True)

    budget_min = Column(Float, nullable=True)
    budget_max = Column(Float, nullable=True)
    locations = Column(JSON, nullable=False, default=list)
    property_types = Column(JSON, nullable=False, default=list)
    bedrooms_min = Column(Integer, nullable=True)
    bedrooms_max = Column(Integer, nullable=True)
    bathrooms_min = Column(Integer, nullable=True)
    area_min = Column(Float, nullable=True)
    area_max = Column(Float, nullable=True)
    listing_intent = Column(String(10), nullable=False, default="both")

    archived = Column(Boolean, nullable=False, default=False)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (Index("idx_profiles_archived", "archived"),)

    def to_domain(self) -> RequirementProfile:
        return RequirementProfile(
            id=self.id,
            name=self.name or "",
            email=self.email,
            owner_type=self.owner_type,
            owner_id=self.owner_id,
            assigned_handler=self.assigned_handler,
            budget_min=self.budget_min,
            budget_max=self.budget_max,
            locations=list(self.locations or []),
            property_types=set(self.property_types or []),
            bedrooms_min=self.bedrooms_min,
            bedrooms_max=self.bedrooms_max,
            bathrooms_min=self.bathrooms_min,
            area_min=self.area_min,
            area_max=self.area_max,
            listing_intent=self.listing_intent,
            archived=bool(self.archived),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, profile: RequirementProfile) -> "RequirementProfileModel":
        model = cls(id=profile.id)
        model.apply(profile)
        return model

    def apply(self, profile: RequirementProfile) -> None:
        """Copy every field except the primary key from a domain model."""
        self.name = profile.name
        self.email = profile.email
        self.owner_type = _enum_value(profile.owner_type)
        self.owner_id = profile.owner_id
        self.assigned_handler = profile.assigned_handler
        self.budget_min = profile.budget_min
        self.budget_max = profile.budget_max
        self.locations = list(profile.locations)
        self.property_types = sorted(profile.property_types)
        self.bedrooms_min = profile.bedrooms_min
        self.bedrooms_max = profile.bedrooms_max
        self.bathrooms_min = profile.bathrooms_min
        self.area_min = profile.area_min
        self.area_max = profile.area_max
        self.listing_intent = _enum_value(profile.listing_intent)
        self.archived = profile.archived
        self.updated_at = _format_datetime(profile.updated_at)


class ListingModel(Base):
    """ORM model for listings table."""

    __tablename__ = "listings"

    id = Column(String(64), primary_key=True, nullable=False)
    title = Column(Text, nullable=False, default="")
    price = Column(Float, nullable=True)
    city = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    state = Column(String(255), nullable=True)
    property_type = Column(String(50), nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Integer, nullable=True)
    usable_area = Column(Float, nullable=True)
    listing_intent = Column(String(10), nullable=False, default="sale")
    status = Column(String(20), nullable=False, default="active")
    published_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_listings_status_published", "status", "published_at"),
    )

    def to_domain(self) -> Listing:
        return Listing(
            id=self.id,
            title=self.title or "",
            price=self.price,
            city=self.city,
            address=self.address,
            state=self.state,
            property_type=self.property_type,
            bedrooms=self.bedrooms,
            bathrooms=self.bathrooms,
            usable_area=self.usable_area,
            listing_intent=self.listing_intent,
            status=self.status,
            published_at=_parse_datetime(self.published_at),
        )

    @classmethod
    def from_domain(cls, listing: Listing) -> "ListingModel":
        model = cls(id=listing.id)
        model.apply(listing)
        return model

    def apply(self, listing: Listing) -> None:
        self.title = listing.title
        self.price = listing.price
        self.city = listing.city
        self.address = listing.address
        self.state = listing.state
        self.property_type = listing.property_type
        self.bedrooms = listing.bedrooms
        self.bathrooms = listing.bathrooms
        self.usable_area = listing.usable_area
        self.listing_intent = _enum_value(listing.listing_intent)
        self.status = _enum_value(listing.status)
        self.published_at = _format_datetime(listing.published_at)


class MatchAlertModel(Base):
    """ORM model for match_alerts table.

    ``idempotency_key`` is unique: concurrent dispatches of the same
    (profile, listing, batch) can never insert two rows.
    """

    __tablename__ = "match_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String(64), nullable=False)
    listing_id = Column(String(64), nullable=False)
    batch_id = Column(String(64), nullable=False)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    score = Column(Integer, nullable=False)
    verdicts = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="pending")
    trigger = Column(String(30), nullable=False, default="ingestion")
    assigned_handler = Column(String(255), nullable=True)
    notification_sent_at = Column(String(50), nullable=True)
    drafted_subject = Column(Text, nullable=True)
    drafted_body = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_alerts_pair_status", "profile_id", "listing_id", "status"),
        Index("idx_alerts_listing", "listing_id"),
    )

    def to_domain(self) -> MatchAlert:
        return MatchAlert(
            id=self.id,
            profile_id=self.profile_id,
            listing_id=self.listing_id,
            batch_id=self.batch_id,
            idempotency_key=self.idempotency_key,
            score=self.score,
            verdicts=list(self.verdicts or []),
            status=self.status,
            trigger=self.trigger,
            assigned_handler=self.assigned_handler,
            notification_sent_at=_parse_datetime(self.notification_sent_at),
            drafted_subject=self.drafted_subject,
            drafted_body=self.drafted_body,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
        )

    @classmethod
    def from_domain(cls, alert: MatchAlert) -> "MatchAlertModel":
        return cls(
            profile_id=alert.profile_id,
            listing_id=alert.listing_id,
            batch_id=alert.batch_id,
            idempotency_key=alert.idempotency_key,
            score=alert.score,
            verdicts=list(alert.verdicts),
            status=_enum_value(alert.status),
            trigger=alert.trigger,
            assigned_handler=alert.assigned_handler,
            notification_sent_at=_format_datetime(alert.notification_sent_at),
            drafted_subject=alert.drafted_subject,
            drafted_body=alert.drafted_body,
            created_at=_format_datetime(alert.created_at),
            updated_at=_format_datetime(alert.updated_at),
        )


class NotificationModel(Base):
    """ORM model for notifications table."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    recipient = Column(String(255), nullable=False)
    priority = Column(String(10), nullable=False, default="medium")
    related_entity_type = Column(String(50), nullable=False)
    related_entity_id = Column(String(64), nullable=False)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_notifications_recipient", "recipient", "read"),
        Index("idx_notifications_entity", "related_entity_type", "related_entity_id"),
    )

    def to_domain(self) -> Notification:
        return Notification(
            id=self.id,
            title=self.title,
            message=self.message,
            recipient=self.recipient,
            priority=self.priority,
            related_entity_type=self.related_entity_type,
            related_entity_id=self.related_entity_id,
            metadata=dict(self.extra_metadata or {}),
            read=bool(self.read),
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationModel":
        return cls(
            title=notification.title,
            message=notification.message,
            recipient=notification.recipient,
            priority=_enum_value(notification.priority),
            related_entity_type=notification.related_entity_type,
            related_entity_id=notification.related_entity_id,
            extra_metadata=dict(notification.metadata),
            read=notification.read,
            created_at=_format_datetime(notification.created_at),
        )


class ScheduleModel(Base):
    """ORM model for schedules table."""

    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    profile_id = Column(String(64), nullable=False)
    frequency = Column(String(10), nullable=False)
    day_of_week = Column(Integer, nullable=True)
    day_of_month = Column(Integer, nullable=False, default=1)
    time_of_day = Column(String(5), nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    min_score = Column(Integer, nullable=False, default=60)
    send_email = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    last_run = Column(String(50), nullable=True)
    next_run = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)

    __table_args__ = (
        Index("idx_schedules_active_next_run", "active", "next_run"),
        Index("idx_schedules_profile", "profile_id"),
    )

    def to_domain(self) -> Schedule:
        return Schedule(
            id=self.id,
            name=self.name,
            profile_id=self.profile_id,
            frequency=self.frequency,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            time_of_day=self.time_of_day,
            timezone=self.timezone,
            min_score=self.min_score,
            send_email=bool(self.send_email),
            active=bool(self.active),
            last_run=_parse_datetime(self.last_run),
            next_run=_parse_datetime(self.next_run),
            created_at=_parse_datetime(self.created_at),
        )

    @classmethod
    def from_domain(cls, schedule: Schedule) -> "ScheduleModel":
        model = cls()
        model.apply(schedule)
        model.created_at = _format_datetime(schedule.created_at)
        return model

    def apply(self, schedule: Schedule) -> None:
        """Copy mutable fields (everything but id and created_at)."""
        self.name = schedule.name
        self.profile_id = schedule.profile_id
        self.frequency = _enum_value(schedule.frequency)
        self.day_of_week = schedule.day_of_week
        self.day_of_month = schedule.day_of_month
        self.time_of_day = schedule.time_of_day
        self.timezone = schedule.timezone
        self.min_score = schedule.min_score
        self.send_email = schedule.send_email
        self.active = schedule.active
        self.last_run = _format_datetime(schedule.last_run)
        self.next_run = _format_datetime(schedule.next_run)


def _enum_value(value):
    return getattr(value, "value", value)


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format datetime as fixed-width ISO 8601 UTC string for storage."""
    dt = ensure_utc(dt)
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string to a timezone-aware UTC datetime."""
    return parse_iso_datetime(dt_str)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
