"""Exceptions raised by the matching engine."""


class MatchingError(Exception):
    """Base exception for scoring and ranking failures."""


class InvalidMatchInputError(MatchingError):
    """Raised when a profile or listing is missing or has no usable identifier."""
