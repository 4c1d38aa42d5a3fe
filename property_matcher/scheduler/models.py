"""Result types for scheduler runs."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from property_matcher.pipeline.models import ProfileRunStats


@dataclass
class ScheduleRunOutcome:
    """
    Result of executing one schedule.

    Attributes:
        schedule_id: Executed schedule
        profile_id: Profile the schedule re-evaluates
        status: completed, failed or skipped
        stats: Pipeline statistics, when the pipeline returned
        error: Failure message
        next_run: next_run stored after the execution
    """

    schedule_id: int
    profile_id: str
    status: str
    stats: Optional[ProfileRunStats] = None
    error: Optional[str] = None
    next_run: Optional[datetime] = None

    @property
    def is_success(self) -> bool:
        return self.status == "completed"


@dataclass
class ScheduleRunReport:
    """Outcome of one run_due() pass."""

    started_at: datetime
    finished_at: datetime
    outcomes: List[ScheduleRunOutcome] = field(default_factory=list)

    @property
    def due_count(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "skipped")

    @property
    def had_errors(self) -> bool:
        return self.failed > 0
