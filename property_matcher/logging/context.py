"""Context propagation for structured logging.

Fields pushed here (run_id, profile_id, listing_id, schedule_id, ...) are
copied onto every log record emitted inside the scope by ContextualFilter.
Context is stored in a ContextVar so worker threads and nested pipeline
steps each see their own view.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional


LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("match_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Get a copy of the current logging context.

    Returns:
        Dictionary of current context fields
    """
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Args:
        **kwargs: Key-value pairs to add to the logging context

    Returns:
        Token that restores the previous context via pop_log_context()

    Example:
        >>> token = push_log_context(run_id="abc123", profile_id="prof-1")
        >>> pop_log_context(token)
    """
    current = LogContextVar.get()
    return LogContextVar.set({**current, **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context to the state before the matching push."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Clear all logging context fields (used by tests)."""
    LogContextVar.set({})


class log_context:
    """Context manager for scoped logging context.

    Example:
        >>> with log_context(run_id="abc123", profile_id="prof-1"):
        ...     logger.info("Ranking candidates")
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False
