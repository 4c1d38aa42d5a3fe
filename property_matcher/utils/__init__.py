"""Utility functions for hashing, time handling and text normalization."""

from .hashing import compute_alert_key, hash_string
from .text import format_amount, normalize_place, truncate_text
from .timestamps import ensure_utc, format_timestamp, parse_iso_datetime, utc_now

__all__ = [
    # Hashing
    "compute_alert_key",
    "hash_string",
    # Timestamps
    "utc_now",
    "ensure_utc",
    "parse_iso_datetime",
    "format_timestamp",
    # Text
    "normalize_place",
    "format_amount",
    "truncate_text",
]
