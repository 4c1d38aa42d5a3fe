"""Text-generation collaborator used to draft personalised outbound messages."""

from .client import HTTPTextGenerator, TextGenerator
from .exceptions import (
    TextGenerationError,
    TextGenerationHTTPError,
    TextGenerationResponseError,
    TextGenerationTimeoutError,
)
from .prompts import DRAFT_OUTPUT_SCHEMA, PromptRenderer

__all__ = [
    "HTTPTextGenerator",
    "TextGenerator",
    "PromptRenderer",
    "DRAFT_OUTPUT_SCHEMA",
    "TextGenerationError",
    "TextGenerationHTTPError",
    "TextGenerationTimeoutError",
    "TextGenerationResponseError",
]
