"""Recurring schedules.

This module provides:
- compute_next_run: Next slot for a daily/weekly/monthly cadence
- RecurrenceScheduler: Schedule lifecycle and execution
- SchedulerService: APScheduler ticker that runs due schedules
"""

from .exceptions import ScheduleError, ScheduleNotFoundError
from .models import ScheduleRunOutcome, ScheduleRunReport
from .recurrence import compute_next_run, next_run_for, resolve_timezone
from .service import RecurrenceScheduler
from .ticker import SchedulerService

__all__ = [
    "compute_next_run",
    "next_run_for",
    "resolve_timezone",
    "RecurrenceScheduler",
    "SchedulerService",
    "ScheduleRunOutcome",
    "ScheduleRunReport",
    "ScheduleError",
    "ScheduleNotFoundError",
]
