"""Background ticker that runs due schedules at a fixed interval."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from property_matcher.logging import get_logger

logger = get_logger(__name__, component="scheduler")

JOB_ID = "schedule-tick"


class SchedulerService:
    """
    Wraps APScheduler to call the tick callable at configured intervals.

    Uses BackgroundScheduler to run jobs in a separate thread while
    allowing the main thread to handle signals and coordinate shutdown.
    """

    def __init__(
        self,
        tick_callable: Callable[[], object],
        interval_minutes: int = 60,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            tick_callable: Function to call on each tick (e.g., RecurrenceScheduler.run_due)
            interval_minutes: Minutes between ticks
            shutdown_event: Optional event to set on shutdown for coordination
        """
        if interval_minutes < 1:
            raise ValueError(f"interval_minutes must be at least 1, got {interval_minutes}")

        self.tick_callable = tick_callable
        self.interval_minutes = interval_minutes
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,  # no overlapping ticks
                "coalesce": True,
                "misfire_grace_time": interval_minutes * 60,
            },
            timezone=timezone.utc,
        )

    def _tick(self) -> None:
        try:
            self.tick_callable()
        except Exception as e:
            # A failed tick must not unschedule the job; the next tick retries
            logger.error(
                f"Scheduler tick failed: {e}",
                exc_info=True,
                extra={"event": "scheduler.tick.failed", "error_type": type(e).__name__},
            )

    def start(self) -> None:
        """
        Start the scheduler and register the tick job.

        The first tick runs immediately after startup.
        """
        trigger = IntervalTrigger(minutes=self.interval_minutes, timezone=timezone.utc)

        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self._tick,
            trigger=trigger,
            id=JOB_ID,
            name="Run due match schedules",
            replace_existing=True,
            next_run_time=next_run,
        )
        self.scheduler.start()

        logger.info(
            f"Scheduler started with interval: {self.interval_minutes} minutes",
            extra={
                "event": "scheduler.started",
                "interval_minutes": self.interval_minutes,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: If True, wait for a running tick to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self) -> None:
        """Run one tick synchronously in the current thread."""
        logger.info("Triggering immediate tick", extra={"event": "scheduler.trigger_now"})
        self._tick()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        """Next tick time, or None if not scheduled."""
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None
