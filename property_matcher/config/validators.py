"""Soft validation checks that warn instead of failing."""

import warnings
from typing import Any, Dict, List

from property_matcher.utils.text import normalize_place


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for potential issues and return warnings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    weights = config_dict.get("weights", {})
    if isinstance(weights, dict):
        zeroed = sorted(k for k, v in weights.items() if isinstance(v, (int, float)) and v == 0)
        if zeroed:
            warning_messages.append(
                f"Criteria with weight 0 never affect the score: {', '.join(zeroed)}"
            )

    # A locality listed under two regions makes partial location credit ambiguous
    regions = config_dict.get("regions", {})
    if isinstance(regions, dict):
        owners: Dict[str, str] = {}
        for region, localities in regions.items():
            if not isinstance(localities, list):
                continue
            for locality in localities:
                if not isinstance(locality, str):
                    continue
                key = normalize_place(locality)
                if key in owners and owners[key] != region:
                    warning_messages.append(
                        f"Locality '{locality}' is listed under both '{owners[key]}' and "
                        f"'{region}'; the first region wins"
                    )
                else:
                    owners.setdefault(key, region)

    policies = config_dict.get("policies", {})
    if isinstance(policies, dict):
        for name, policy in policies.items():
            if not isinstance(policy, dict):
                continue
            low = policy.get("low_threshold")
            if isinstance(low, int) and low < 40:
                warning_messages.append(
                    f"Policy '{name}' alerts from score {low}; expect many weak matches"
                )

    scheduler = config_dict.get("scheduler", {})
    if isinstance(scheduler, dict):
        tick = scheduler.get("tick_interval_minutes")
        if isinstance(tick, int) and tick > 60:
            warning_messages.append(
                f"tick_interval_minutes={tick} delays schedules by up to {tick} minutes"
            )

    drafting = config_dict.get("drafting", {})
    if isinstance(drafting, dict):
        timeout = drafting.get("timeout_seconds")
        if isinstance(timeout, (int, float)) and timeout > 60:
            warning_messages.append(
                f"drafting.timeout_seconds={timeout} can stall ingestion runs"
            )

    advanced = config_dict.get("advanced", {})
    if isinstance(advanced, dict):
        max_listings = advanced.get("max_listings_per_run", 500)
        if isinstance(max_listings, int) and max_listings > 5000:
            warning_messages.append(
                f"Large max_listings_per_run ({max_listings}) may cause performance issues"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
