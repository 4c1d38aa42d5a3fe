"""Hashing utilities for deterministic alert keys.

The dispatcher de-duplicates alerts with a key derived from the profile,
the listing and the evaluation batch that produced the match.
"""

import hashlib


def compute_alert_key(profile_id: str, listing_id: str, batch_id: str) -> str:
    """Compute the idempotency key for an alert.

    The key is a SHA256 hash of ``profile_id:listing_id:batch_id`` with
    surrounding whitespace removed from each part. Identifiers are case
    sensitive.

    Args:
        profile_id: Requirement profile identifier
        listing_id: Listing identifier
        batch_id: Evaluation batch (pipeline run) identifier

    Returns:
        Hexadecimal string representation of SHA256 hash (64 characters)
    """
    composite_key = f"{profile_id.strip()}:{listing_id.strip()}:{batch_id.strip()}"
    return hash_string(composite_key)


def hash_string(value: str) -> str:
    """Compute SHA256 hash of a string value.

    Args:
        value: String to hash

    Returns:
        Hexadecimal string representation of SHA256 hash (64 characters)
    """
    hash_obj = hashlib.sha256(value.encode("utf-8"))
    return hash_obj.hexdigest()
