"""Recurring re-evaluation of requirement profiles.

RecurrenceScheduler owns the schedule lifecycle (create, update, pause,
resume, delete) and executes schedules through a pipeline callable, either
on demand (run_now) or when they fall due (run_due).

Each operation opens its own database session. A schedule's pipeline run and
its last_run/next_run bookkeeping happen in separate sessions so one failing
schedule never rolls back another's progress.
"""

import logging
from contextlib import AbstractContextManager
from typing import Any, Callable, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from property_matcher.domain.models import Schedule
from property_matcher.logging import get_logger
from property_matcher.logging.context import log_context
from property_matcher.persistence.database import get_session
from property_matcher.persistence.exceptions import PersistenceError, RecordNotFoundError
from property_matcher.persistence.repositories import ProfileRepository, ScheduleRepository
from property_matcher.pipeline.models import ProfileRunStats
from property_matcher.utils.timestamps import ensure_utc, format_timestamp, utc_now

from .exceptions import ScheduleError, ScheduleNotFoundError
from .models import ScheduleRunOutcome, ScheduleRunReport
from .recurrence import next_run_for, resolve_timezone

logger = get_logger(__name__, component="scheduler")

ScheduleRunner = Callable[[Schedule, str], ProfileRunStats]

CADENCE_FIELDS = {"frequency", "day_of_week", "day_of_month", "time_of_day", "timezone"}
READ_ONLY_FIELDS = {"id", "created_at", "last_run", "next_run"}


class RecurrenceScheduler:
    """Lifecycle and execution of recurring schedules."""

    def __init__(
        self,
        runner: ScheduleRunner,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable = utc_now,
        default_timezone: str = "UTC",
        logger_instance: Optional[logging.Logger] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            runner: Runs the pipeline for a schedule; called as runner(schedule, trigger)
            session_factory: Context manager yielding a database session
            clock: Returns the current UTC time
            default_timezone: Timezone for schedules created without one
            logger_instance: Logger instance (uses module logger if None)
        """
        self.runner = runner
        self.session_factory = session_factory
        self.clock = clock
        self.default_timezone = default_timezone
        self.logger = logger_instance or logger

    # Lifecycle

    def create(self, schedule: Schedule) -> Schedule:
        """
        Store a new schedule with its first next_run.

        Raises:
            ScheduleError: If the profile does not exist or the slot is invalid
        """
        if "timezone" not in schedule.model_fields_set:
            schedule = schedule.model_copy(update={"timezone": self.default_timezone})
        resolve_timezone(schedule.timezone)

        next_run = next_run_for(schedule, self.clock()) if schedule.active else None
        schedule = schedule.model_copy(update={"id": None, "last_run": None, "next_run": next_run})

        with self.session_factory() as session:
            self._require_profile(session, schedule.profile_id)
            created = ScheduleRepository(session).create(schedule)

        self.logger.info(
            f"Schedule {created.id} '{created.name}' created, next run {_fmt(created.next_run)}",
            extra={
                "event": "scheduler.schedule.created",
                "schedule_id": created.id,
                "profile_id": created.profile_id,
                "frequency": created.frequency.value,
            },
        )
        return created

    def update(self, schedule_id: int, **changes: Any) -> Schedule:
        """
        Change schedule fields; next_run is recomputed when the cadence changes.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
            ScheduleError: If the changes are invalid
        """
        read_only = READ_ONLY_FIELDS & set(changes)
        if read_only:
            raise ScheduleError(f"Cannot update schedule fields: {', '.join(sorted(read_only))}")

        with self.session_factory() as session:
            repo = ScheduleRepository(session)
            current = self._require(repo, schedule_id)
            try:
                updated = Schedule.model_validate({**current.model_dump(), **changes})
            except ValidationError as e:
                raise ScheduleError(f"Invalid schedule update: {e}") from e
            resolve_timezone(updated.timezone)

            if "profile_id" in changes:
                self._require_profile(session, updated.profile_id)
            if updated.active and (CADENCE_FIELDS & set(changes) or updated.next_run is None):
                updated = updated.model_copy(update={"next_run": next_run_for(updated, self.clock())})

            stored = repo.update(updated)

        self.logger.info(
            f"Schedule {schedule_id} updated ({', '.join(sorted(changes))})",
            extra={"event": "scheduler.schedule.updated", "schedule_id": schedule_id},
        )
        return stored

    def pause(self, schedule_id: int) -> Schedule:
        """Deactivate a schedule; next_run is kept for resume()."""
        with self.session_factory() as session:
            repo = ScheduleRepository(session)
            schedule = self._require(repo, schedule_id)
            if not schedule.active:
                return schedule
            stored = repo.update(schedule.model_copy(update={"active": False}))

        self.logger.info(
            f"Schedule {schedule_id} paused",
            extra={"event": "scheduler.schedule.paused", "schedule_id": schedule_id},
        )
        return stored

    def resume(self, schedule_id: int) -> Schedule:
        """Reactivate a schedule; a next_run already in the past is recomputed."""
        now = self.clock()
        with self.session_factory() as session:
            repo = ScheduleRepository(session)
            schedule = self._require(repo, schedule_id)
            if schedule.active:
                return schedule

            next_run = schedule.next_run
            if next_run is None or ensure_utc(next_run) <= now:
                next_run = next_run_for(schedule, now)
            stored = repo.update(schedule.model_copy(update={"active": True, "next_run": next_run}))

        self.logger.info(
            f"Schedule {schedule_id} resumed, next run {_fmt(stored.next_run)}",
            extra={"event": "scheduler.schedule.resumed", "schedule_id": schedule_id},
        )
        return stored

    def delete(self, schedule_id: int) -> None:
        """Delete a schedule permanently."""
        with self.session_factory() as session:
            try:
                ScheduleRepository(session).delete(schedule_id)
            except RecordNotFoundError as e:
                raise ScheduleNotFoundError(schedule_id) from e

        self.logger.info(
            f"Schedule {schedule_id} deleted",
            extra={"event": "scheduler.schedule.deleted", "schedule_id": schedule_id},
        )

    def get(self, schedule_id: int) -> Schedule:
        with self.session_factory() as session:
            return self._require(ScheduleRepository(session), schedule_id)

    def list(self, active: Optional[bool] = None, profile_id: Optional[str] = None) -> List[Schedule]:
        with self.session_factory() as session:
            return ScheduleRepository(session).list(active=active, profile_id=profile_id)

    # Execution

    def due(self, now=None) -> List[Schedule]:
        """Active schedules whose next_run is at or before ``now``."""
        now = ensure_utc(now) if now is not None else self.clock()
        with self.session_factory() as session:
            return ScheduleRepository(session).due(now)

    def run_now(self, schedule_id: int) -> ScheduleRunOutcome:
        """
        Execute a schedule immediately, whatever its slot or active flag.

        next_run is recomputed from the current time afterwards.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        schedule = self.get(schedule_id)
        return self._execute(schedule, trigger="run_now")

    def run_due(self, now=None) -> ScheduleRunReport:
        """
        Execute every due schedule.

        Each schedule is isolated: a failure is recorded in its outcome and
        the remaining schedules still run.
        """
        started_at = utc_now()
        due = self.due(now)

        self.logger.info(
            f"Scheduler tick: {len(due)} due schedule(s)",
            extra={"event": "scheduler.tick", "due_count": len(due)},
        )

        outcomes = [self._execute(schedule, trigger="schedule") for schedule in due]
        report = ScheduleRunReport(started_at=started_at, finished_at=utc_now(), outcomes=outcomes)

        self.logger.info(
            f"Scheduler tick completed: {report.succeeded} succeeded, "
            f"{report.failed} failed, {report.skipped} skipped",
            extra={
                "event": "scheduler.tick.completed",
                "due_count": report.due_count,
                "succeeded": report.succeeded,
                "failed": report.failed,
                "skipped": report.skipped,
            },
        )
        return report

    def _execute(self, schedule: Schedule, trigger: str) -> ScheduleRunOutcome:
        outcome = ScheduleRunOutcome(
            schedule_id=schedule.id, profile_id=schedule.profile_id, status="completed"
        )

        with log_context(schedule_id=schedule.id, profile_id=schedule.profile_id):
            self.logger.info(
                f"Running schedule {schedule.id} '{schedule.name}'",
                extra={"event": "scheduler.schedule.run.started", "trigger": trigger},
            )

            try:
                stats = self.runner(schedule, trigger)
            except Exception as e:
                # Isolate schedule failures; the error is reported in the outcome
                self.logger.error(
                    f"Schedule {schedule.id} failed: {e}",
                    exc_info=True,
                    extra={"event": "scheduler.schedule.run.failed", "error_type": type(e).__name__},
                )
                outcome.status = "failed"
                outcome.error = str(e)
            else:
                outcome.stats = stats
                if stats.skipped:
                    outcome.status = "skipped"
                    outcome.next_run = schedule.next_run
                    self.logger.warning(
                        f"Schedule {schedule.id} skipped: profile run already in progress",
                        extra={"event": "scheduler.schedule.run.skipped"},
                    )
                    return outcome
                if stats.had_errors:
                    outcome.status = "failed"
                    outcome.error = stats.error_message or "; ".join(stats.dispatch_errors) or None

            try:
                outcome.next_run = self._record_run(schedule.id)
            except (PersistenceError, ScheduleError) as e:
                self.logger.error(
                    f"Could not record run of schedule {schedule.id}: {e}",
                    extra={"event": "scheduler.schedule.record_failed"},
                )
                outcome.status = "failed"
                outcome.error = outcome.error or str(e)

            self.logger.info(
                f"Schedule {schedule.id} {outcome.status}, next run {_fmt(outcome.next_run)}",
                extra={"event": "scheduler.schedule.run.completed", "status": outcome.status},
            )
        return outcome

    def _record_run(self, schedule_id: int):
        """Set last_run and recompute next_run from now; returns the new next_run."""
        ran_at = self.clock()
        with self.session_factory() as session:
            repo = ScheduleRepository(session)
            schedule = repo.get(schedule_id)
            if schedule is None:
                # Deleted while running
                return None
            next_run = next_run_for(schedule, ran_at)
            repo.update(schedule.model_copy(update={"last_run": ran_at, "next_run": next_run}))
        return next_run

    @staticmethod
    def _require(repo: ScheduleRepository, schedule_id: int) -> Schedule:
        schedule = repo.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    @staticmethod
    def _require_profile(session: Session, profile_id: str) -> None:
        if ProfileRepository(session).get(profile_id) is None:
            raise ScheduleError(f"Requirement profile '{profile_id}' does not exist")


def _fmt(dt) -> str:
    return format_timestamp(dt) if dt else "none"
