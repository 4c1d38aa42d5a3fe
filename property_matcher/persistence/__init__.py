"""Persistence layer for profiles, listings, alerts, notifications and schedules.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - ProfileRepository, ListingRepository
    - MatchAlertRepository: alerts, idempotent creation and lifecycle transitions
    - NotificationRepository, ScheduleRepository

Example usage:
    >>> from property_matcher.persistence import init_database, get_session, ProfileRepository
    >>>
    >>> init_database("sqlite:///./data/property_matcher.db")
    >>>
    >>> with get_session() as session:
    ...     profile = ProfileRepository(session).get("prof-001")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    InvalidTransitionError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    ListingRepository,
    MatchAlertRepository,
    NotificationRepository,
    ProfileRepository,
    ScheduleRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "ProfileRepository",
    "ListingRepository",
    "MatchAlertRepository",
    "NotificationRepository",
    "ScheduleRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "InvalidTransitionError",
]
