"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can catch
every storage failure with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - Database used before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when a required record is not found.

    Optional lookups (get, find_open) return None instead.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated (e.g. a duplicate idempotency key)."""

    pass


class InvalidTransitionError(PersistenceError):
    """Raised when an alert is moved to a status its current status does not allow."""

    def __init__(self, alert_id: int, current: str, requested: str):
        self.alert_id = alert_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Alert {alert_id} cannot move from '{current}' to '{requested}'"
        )
