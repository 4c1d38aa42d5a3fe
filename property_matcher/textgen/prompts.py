"""Prompt rendering for drafted outbound messages using Jinja2."""

import logging
from typing import Any, Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from property_matcher.domain.models import Listing, RequirementProfile
from property_matcher.matching.models import MatchResult
from property_matcher.matching.utils import top_justifications
from property_matcher.utils.text import format_amount

from .exceptions import TextGenerationError

logger = logging.getLogger(__name__)

DRAFT_OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "subject": {"type": "string"},
        "body": {"type": "string"},
    },
    "required": ["subject", "body"],
}


class PromptRenderer:
    """Renders the draft-message prompt from ``draft_prompt.j2``.

    Prompts are plain text, so autoescaping is off; StrictUndefined still
    turns a missing variable into an error instead of an empty string.
    """

    def __init__(self, template_dir: str = "templates", template_name: str = "draft_prompt.j2"):
        self.template_name = template_name
        self.env = Environment(
            loader=PackageLoader("property_matcher.textgen", template_dir),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["amount"] = format_amount

    def build_context(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        language: str,
    ) -> Dict[str, Any]:
        return {
            "buyer_name": profile.name or "the client",
            "requirements": profile.requirements_summary(),
            "listing": {
                "title": listing.title or listing.id,
                "price": listing.price,
                "location": listing.display_location() or "n/a",
                "property_type": listing.property_type or "n/a",
                "bedrooms": listing.bedrooms,
                "bathrooms": listing.bathrooms,
                "usable_area": listing.usable_area,
                "listing_intent": getattr(listing.listing_intent, "value", listing.listing_intent),
            },
            "score": result.score,
            "justifications": top_justifications(result.verdicts),
            "language": language,
        }

    def render(
        self,
        profile: RequirementProfile,
        listing: Listing,
        result: MatchResult,
        language: str,
    ) -> str:
        """Render the prompt for one match.

        Raises:
            TextGenerationError: If the template fails to render
        """
        try:
            template = self.env.get_template(self.template_name)
            return template.render(self.build_context(profile, listing, result, language)).strip()
        except TemplateError as e:
            logger.error(f"Prompt rendering failed: {e}", exc_info=True)
            raise TextGenerationError(f"Prompt rendering failed: {e}") from e
