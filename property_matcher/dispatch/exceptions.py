"""Exceptions raised by the action dispatcher and message drafter."""


class DispatchError(Exception):
    """Raised when a dispatch request is inconsistent (e.g. result for another pair)."""

    pass


class DraftingError(Exception):
    """Raised when no drafted message could be produced."""

    pass


class DraftingTimeoutError(DraftingError):
    """Raised when the text-generation call exceeds its time budget."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Message drafting timed out after {timeout_seconds:g} seconds")
