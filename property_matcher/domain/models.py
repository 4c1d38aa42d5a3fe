"""Core domain models for profiles, listings, alerts, notifications and schedules.

This module defines the data structures shared by every component:
- RequirementProfile: a buyer's search criteria
- Listing: a property eligible for matching while active
- MatchAlert: persisted record of a qualifying match and its lifecycle
- Notification: message addressed to a handler
- Schedule: recurring re-evaluation of one profile
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator

from property_matcher.utils.timestamps import ensure_utc


class ListingIntent(str, Enum):
    """Commercial intent of a listing (or desired by a buyer)."""

    SALE = "sale"
    RENT = "rent"
    BOTH = "both"


class ListingStatus(str, Enum):
    """Publication status of a listing. Only ACTIVE listings are matched."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    WITHDRAWN = "withdrawn"


class OwnerType(str, Enum):
    """Entity that owns a requirement profile."""

    CONTACT = "contact"
    OPPORTUNITY = "opportunity"


class AlertStatus(str, Enum):
    """Lifecycle of a MatchAlert: pending -> notified -> viewed -> contacted | dismissed."""

    PENDING = "pending"
    NOTIFIED = "notified"
    VIEWED = "viewed"
    CONTACTED = "contacted"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self in (AlertStatus.CONTACTED, AlertStatus.DISMISSED)


OPEN_ALERT_STATUSES = (AlertStatus.PENDING, AlertStatus.NOTIFIED, AlertStatus.VIEWED)

ALLOWED_ALERT_TRANSITIONS: Dict[AlertStatus, Set[AlertStatus]] = {
    AlertStatus.PENDING: {AlertStatus.NOTIFIED, AlertStatus.VIEWED, AlertStatus.DISMISSED},
    AlertStatus.NOTIFIED: {AlertStatus.VIEWED, AlertStatus.CONTACTED, AlertStatus.DISMISSED},
    AlertStatus.VIEWED: {AlertStatus.CONTACTED, AlertStatus.DISMISSED},
    AlertStatus.CONTACTED: set(),
    AlertStatus.DISMISSED: set(),
}


class NotificationPriority(str, Enum):
    """Priority of a handler notification."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Frequency(str, Enum):
    """Cadence of a recurring schedule."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def _utc_validator(v: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(v)


def _check_range(low: Optional[float], high: Optional[float], label: str) -> None:
    if low is not None and high is not None and low > high:
        raise ValueError(f"{label}_min ({low}) cannot be greater than {label}_max ({high})")


class RequirementProfile(BaseModel):
    """A buyer's stored search requirements.

    Every criterion is optional; an unset criterion is "not specified" and is
    skipped entirely by the evaluator instead of counting as a miss.
    """

    id: str = Field(..., min_length=1, description="Profile identifier")
    name: str = Field("", description="Buyer display name")
    email: Optional[str] = Field(None, description="Buyer e-mail for report delivery")
    owner_type: OwnerType = Field(OwnerType.CONTACT, description="Owning entity type")
    owner_id: Optional[str] = Field(None, description="Owning contact/opportunity id")
    assigned_handler: Optional[str] = Field(
        None, description="E-mail of the agent who handles this buyer"
    )

    budget_min: Optional[float] = Field(None, ge=0)
    budget_max: Optional[float] = Field(None, ge=0)
    locations: List[str] = Field(default_factory=list, description="Desired locations, ordered")
    property_types: Set[str] = Field(default_factory=set, description="Desired property types")
    bedrooms_min: Optional[int] = Field(None, ge=0)
    bedrooms_max: Optional[int] = Field(None, ge=0)
    bathrooms_min: Optional[int] = Field(None, ge=0)
    area_min: Optional[float] = Field(None, ge=0)
    area_max: Optional[float] = Field(None, ge=0)
    listing_intent: ListingIntent = Field(ListingIntent.BOTH)

    archived: bool = Field(False, description="Soft-archived with the owning contact")
    updated_at: Optional[datetime] = None

    @field_validator("id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Profile id cannot be empty or whitespace-only")
        return stripped

    @field_validator("email", "assigned_handler", "owner_id")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None

    @field_validator("locations")
    @classmethod
    def clean_locations(cls, v: List[str]) -> List[str]:
        """Strip entries and drop blanks, keeping the buyer's order."""
        return [loc.strip() for loc in v if loc and loc.strip()]

    @field_validator("property_types")
    @classmethod
    def normalize_types(cls, v: Set[str]) -> Set[str]:
        return {t.strip().lower() for t in v if t and t.strip()}

    @field_validator("updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_validator(v)

    @model_validator(mode="after")
    def validate_ranges(self):
        _check_range(self.budget_min, self.budget_max, "budget")
        _check_range(self.bedrooms_min, self.bedrooms_max, "bedrooms")
        _check_range(self.area_min, self.area_max, "area")
        return self

    def has_criteria(self) -> bool:
        """Return True if at least one criterion is specified."""
        return any(
            [
                self.budget_min is not None,
                self.budget_max is not None,
                bool(self.locations),
                bool(self.property_types),
                self.bedrooms_min is not None,
                self.bedrooms_max is not None,
                self.bathrooms_min is not None,
                self.area_min is not None,
                self.area_max is not None,
                self.listing_intent != ListingIntent.BOTH,
            ]
        )

    def requirements_summary(self) -> Dict[str, Any]:
        """Return only the specified criteria, for prompts and reports."""
        data = self.model_dump(
            include={
                "budget_min", "budget_max", "locations", "property_types",
                "bedrooms_min", "bedrooms_max", "bathrooms_min",
                "area_min", "area_max", "listing_intent",
            },
            mode="json",
        )
        if data.get("listing_intent") == ListingIntent.BOTH.value:
            data.pop("listing_intent")
        if "property_types" in data:
            data["property_types"] = sorted(data["property_types"])
        return {k: v for k, v in data.items() if v not in (None, [], "")}

    model_config = {"json_schema_extra": {"example": {
        "id": "prof-001",
        "name": "Ana Silva",
        "assigned_handler": "agent@example.com",
        "budget_max": 300000,
        "locations": ["Lisboa"],
        "property_types": ["apartment"],
        "bedrooms_min": 2,
    }}}


class Listing(BaseModel):
    """A property listing."""

    id: str = Field(..., min_length=1, description="Listing identifier")
    title: str = Field("", description="Listing headline")
    price: Optional[float] = Field(None, ge=0)
    city: Optional[str] = None
    address: Optional[str] = None
    state: Optional[str] = Field(None, description="District / administrative region")
    property_type: Optional[str] = None
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    usable_area: Optional[float] = Field(None, ge=0)
    listing_intent: ListingIntent = Field(ListingIntent.SALE)
    status: ListingStatus = Field(ListingStatus.ACTIVE)
    published_at: Optional[datetime] = None

    @field_validator("id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Listing id cannot be empty or whitespace-only")
        return stripped

    @field_validator("property_type")
    @classmethod
    def normalize_type(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().lower() or None

    @field_validator("listing_intent")
    @classmethod
    def concrete_intent(cls, v: ListingIntent) -> ListingIntent:
        if v == ListingIntent.BOTH:
            raise ValueError("A listing must be either for sale or for rent")
        return v

    @field_validator("published_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_validator(v)

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE

    def display_location(self) -> str:
        parts = [p for p in (self.address, self.city, self.state) if p]
        return ", ".join(parts)


class MatchAlert(BaseModel):
    """Persisted record of a match that crossed the reporting threshold."""

    id: Optional[int] = None
    profile_id: str
    listing_id: str
    batch_id: str
    idempotency_key: str
    score: int = Field(..., ge=0, le=100)
    verdicts: List[Dict[str, Any]] = Field(default_factory=list)
    status: AlertStatus = AlertStatus.PENDING
    trigger: str = "ingestion"
    assigned_handler: Optional[str] = None
    notification_sent_at: Optional[datetime] = None
    drafted_subject: Optional[str] = None
    drafted_body: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("notification_sent_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_validator(v)

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal


class Notification(BaseModel):
    """A notification addressed to a handler."""

    id: Optional[int] = None
    title: str
    message: str
    recipient: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    related_entity_type: str
    related_entity_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _utc_validator(v)


class Schedule(BaseModel):
    """Recurring re-evaluation of one requirement profile."""

    id: Optional[int] = None
    name: str = Field(..., min_length=1)
    profile_id: str = Field(..., min_length=1)
    frequency: Frequency = Frequency.WEEKLY
    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0=Monday ... 6=Sunday")
    day_of_month: int = Field(1, ge=1, le=31)
    time_of_day: str = Field("09:00", description="HH:MM, 24h clock")
    timezone: str = Field("UTC", description="IANA timezone name")
    min_score: int = Field(60, ge=0, le=99, description="Alert floor; the draft threshold sits above it")
    send_email: bool = False
    active: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def parse_weekday(cls, v: Any) -> Any:
        """Accept weekday names ("monday", "Mon") as well as 0-6."""
        if isinstance(v, str):
            key = v.strip().lower()
            if key.isdigit():
                return int(key)
            for index, name in enumerate(WEEKDAY_NAMES):
                if key and name.startswith(key) and len(key) >= 3:
                    return index
            raise ValueError(f"Unknown day_of_week: {v!r}")
        return v

    @field_validator("time_of_day")
    @classmethod
    def validate_time(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) == 4 and stripped[1] == ":":
            stripped = f"0{stripped}"
        if not _TIME_OF_DAY.match(stripped):
            raise ValueError(f"time_of_day must be HH:MM (24h), got: {v!r}")
        return stripped

    @field_validator("last_run", "next_run", "created_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc_validator(v)

    @model_validator(mode="after")
    def require_weekday_for_weekly(self):
        if self.frequency == Frequency.WEEKLY and self.day_of_week is None:
            raise ValueError("Weekly schedules require day_of_week")
        return self
