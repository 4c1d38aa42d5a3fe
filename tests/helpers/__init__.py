"""Test helper utilities for Property Matcher tests."""

from .factories import (
    FIXED_NOW,
    make_alert,
    make_listing,
    make_profile,
    make_result,
    make_schedule,
    seed_records,
)

__all__ = [
    "FIXED_NOW",
    "make_alert",
    "make_listing",
    "make_profile",
    "make_result",
    "make_schedule",
    "seed_records",
]
