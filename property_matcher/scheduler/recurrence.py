"""Next-run computation for daily, weekly and monthly schedules.

All results are timezone-aware UTC datetimes strictly after ``now``. The
wall-clock slot (``time_of_day`` and weekday / day of month) is interpreted
in the schedule's own timezone.
"""

import calendar
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from property_matcher.domain.models import Frequency
from property_matcher.utils.timestamps import ensure_utc

from .exceptions import ScheduleError


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the tzinfo for an IANA name; blank or "UTC" map to UTC."""
    if not name or name.strip().upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ScheduleError(f"Unknown timezone '{name}'") from e


def parse_time_of_day(value: str) -> Tuple[int, int]:
    try:
        hour_text, minute_text = value.strip().split(":")
        hour, minute = int(hour_text), int(minute_text)
    except (AttributeError, ValueError) as e:
        raise ScheduleError(f"Invalid time of day '{value}', expected HH:MM") from e
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ScheduleError(f"Invalid time of day '{value}', expected HH:MM")
    return hour, minute


def _at(day: date, hour: int, minute: int, zone: tzinfo) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=zone)


def _add_months(day: date, months: int) -> Tuple[int, int]:
    index = day.month - 1 + months
    return day.year + index // 12, index % 12 + 1


def _month_slot(year: int, month: int, day_of_month: int, hour: int, minute: int, zone: tzinfo) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return _at(date(year, month, min(day_of_month, last_day)), hour, minute, zone)


def compute_next_run(
    frequency: Union[Frequency, str],
    time_of_day: str,
    now: datetime,
    day_of_week: Optional[int] = None,
    day_of_month: int = 1,
    tz: Optional[str] = "UTC",
) -> datetime:
    """Return the first slot strictly after ``now``.

    Args:
        frequency: daily, weekly or monthly
        time_of_day: "HH:MM" in the schedule's timezone
        now: Reference instant (naive values are treated as UTC)
        day_of_week: 0=Monday ... 6=Sunday, required for weekly
        day_of_month: 1-31, clamped to the month length, monthly only
        tz: IANA timezone name of the wall-clock slot

    Raises:
        ScheduleError: On unknown frequency, timezone or malformed slot
    """
    try:
        frequency = Frequency(frequency)
    except ValueError as e:
        raise ScheduleError(f"Unknown frequency '{frequency}'") from e

    zone = resolve_timezone(tz)
    hour, minute = parse_time_of_day(time_of_day)
    now = ensure_utc(now)
    today = now.astimezone(zone).date()

    if frequency == Frequency.DAILY:
        candidate = _at(today, hour, minute, zone)
        if candidate <= now:
            candidate = _at(today + timedelta(days=1), hour, minute, zone)

    elif frequency == Frequency.WEEKLY:
        if day_of_week is None or not 0 <= day_of_week <= 6:
            raise ScheduleError(f"Weekly schedules need day_of_week 0-6, got {day_of_week}")
        days_ahead = (day_of_week - today.weekday()) % 7
        candidate = _at(today + timedelta(days=days_ahead), hour, minute, zone)
        if candidate <= now:
            candidate = _at(today + timedelta(days=days_ahead + 7), hour, minute, zone)

    else:
        if not 1 <= day_of_month <= 31:
            raise ScheduleError(f"day_of_month must be 1-31, got {day_of_month}")
        candidate = _month_slot(today.year, today.month, day_of_month, hour, minute, zone)
        if candidate <= now:
            year, month = _add_months(today, 1)
            candidate = _month_slot(year, month, day_of_month, hour, minute, zone)

    return candidate.astimezone(timezone.utc)


def next_run_for(schedule, now: datetime) -> datetime:
    """compute_next_run() for a Schedule record."""
    return compute_next_run(
        schedule.frequency,
        schedule.time_of_day,
        now,
        day_of_week=schedule.day_of_week,
        day_of_month=schedule.day_of_month,
        tz=schedule.timezone,
    )
