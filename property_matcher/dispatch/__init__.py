"""Follow-up actions for scored matches.

This module provides:
- ActionDispatcher: Threshold-driven alerts, handler notifications and drafts
- MessageDrafter: Bounded-time drafting through a text-generation collaborator
- DispatchOutcome: What was done for one match
"""

from .drafting import MessageDrafter
from .exceptions import DispatchError, DraftingError, DraftingTimeoutError
from .models import DispatchOutcome, DispatchStatus, DraftedMessage
from .service import ActionDispatcher

__all__ = [
    "ActionDispatcher",
    "MessageDrafter",
    "DispatchOutcome",
    "DispatchStatus",
    "DraftedMessage",
    "DispatchError",
    "DraftingError",
    "DraftingTimeoutError",
]
