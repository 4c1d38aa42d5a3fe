"""Exceptions raised by the recurrence scheduler."""


class ScheduleError(Exception):
    """Raised when a schedule is invalid or cannot be executed."""

    pass


class ScheduleNotFoundError(ScheduleError):
    """Raised when a schedule id does not exist."""

    def __init__(self, schedule_id: int):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule {schedule_id} not found")
