"""Drafting of personalised outbound messages for strong matches.

The text-generation call runs on a worker thread and the caller waits at most
``timeout_seconds`` for it. A call that overruns is abandoned: its thread is
left to finish in the background and its result is discarded.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from property_matcher.domain.models import Listing, RequirementProfile
from property_matcher.logging import get_logger
from property_matcher.matching.models import MatchResult
from property_matcher.textgen.client import TextGenerator
from property_matcher.textgen.exceptions import TextGenerationError
from property_matcher.textgen.prompts import DRAFT_OUTPUT_SCHEMA, PromptRenderer
from property_matcher.utils.text import truncate_text

from .exceptions import DraftingError, DraftingTimeoutError
from .models import DraftedMessage

logger = get_logger(__name__, component="dispatch")

MAX_SUBJECT_LENGTH = 200


class MessageDrafter:
    """Requests a drafted message from a text generator with a bounded wait."""

    def __init__(
        self,
        generator: TextGenerator,
        renderer: Optional[PromptRenderer] = None,
        language: str = "Portuguese (Portugal)",
        timeout_seconds: float = 20.0,
        max_body_chars: int = 1200,
        max_workers: int = 2,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize MessageDrafter.

        Args:
            generator: Callable ``(prompt, output_schema) -> {"subject", "body"}``
            renderer: Prompt renderer (creates default if None)
            language: Target language of the drafted message
            timeout_seconds: Maximum time to wait for one draft
            max_body_chars: Drafted bodies are truncated to this length
            max_workers: Worker threads available for concurrent drafts
            logger_instance: Logger instance (uses module logger if None)
        """
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")

        self.generator = generator
        self.renderer = renderer or PromptRenderer()
        self.language = language
        self.timeout_seconds = timeout_seconds
        self.max_body_chars = max_body_chars
        self.logger = logger_instance or logger
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="drafter")

    def draft(self, profile: RequirementProfile, listing: Listing, result: MatchResult) -> DraftedMessage:
        """Draft a message for one match.

        Raises:
            DraftingTimeoutError: If the generator does not answer in time
            DraftingError: If the prompt cannot be rendered or the generator fails
        """
        try:
            prompt = self.renderer.render(profile, listing, result, self.language)
        except TextGenerationError as e:
            raise DraftingError(str(e)) from e

        # Run in a copy of the current context so worker logs keep run/profile ids
        ctx = contextvars.copy_context()
        future = self._executor.submit(ctx.run, self.generator, prompt, DRAFT_OUTPUT_SCHEMA)

        try:
            output = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            self.logger.warning(
                f"Drafting timed out for listing {listing.id} after {self.timeout_seconds:g}s",
                extra={"event": "dispatch.draft.timeout", "listing_id": listing.id},
            )
            raise DraftingTimeoutError(self.timeout_seconds) from e
        except Exception as e:
            # The generator is any callable; whatever it raises stays on this match
            self.logger.warning(
                f"Drafting failed for listing {listing.id}: {e}",
                exc_info=not isinstance(e, TextGenerationError),
                extra={
                    "event": "dispatch.draft.failed",
                    "listing_id": listing.id,
                    "error_type": type(e).__name__,
                },
            )
            raise DraftingError(f"{type(e).__name__}: {e}") from e

        return self._to_message(output)

    def _to_message(self, output) -> DraftedMessage:
        if not isinstance(output, dict):
            raise DraftingError(f"Generator returned {type(output).__name__}, expected an object")

        subject = output.get("subject")
        body = output.get("body")
        if not isinstance(subject, str) or not subject.strip():
            raise DraftingError("Drafted message has no subject")
        if not isinstance(body, str) or not body.strip():
            raise DraftingError("Drafted message has no body")

        return DraftedMessage(
            subject=truncate_text(" ".join(subject.split()), max_length=MAX_SUBJECT_LENGTH),
            body=truncate_text(body.strip(), max_length=self.max_body_chars),
        )

    def close(self) -> None:
        """Stop accepting drafts; abandoned calls are not waited for."""
        self._executor.shutdown(wait=False, cancel_futures=True)
