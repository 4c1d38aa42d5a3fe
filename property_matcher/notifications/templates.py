"""Template rendering for report e-mails using Jinja2.

This module wraps Jinja2 template rendering with caching and strict
undefined checking to catch template errors early.
"""

import logging
from typing import Dict

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from .models import NotificationTemplateError

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders match report templates.

    Templates live in the property_matcher.notifications ``templates``
    directory and are cached by Jinja2 after first load.
    """

    def __init__(
        self,
        template_dir: str = "templates",
        subject_template: str = "match_report_subject.j2",
        html_template: str = "match_report_body.html.j2",
        text_template: str = "match_report_body.txt.j2",
    ):
        self.subject_template_name = subject_template
        self.html_template_name = html_template
        self.text_template_name = text_template

        self.env = Environment(
            loader=PackageLoader("property_matcher.notifications", template_dir),
            autoescape=True,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(self, context: Dict) -> Dict[str, str]:
        """Render all report templates with the provided context.

        Returns:
            Dictionary containing:
            - subject: Rendered subject line (single line, no newlines)
            - html_body: Rendered HTML body
            - text_body: Rendered plain text body

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        try:
            subject_template = self.env.get_template(self.subject_template_name)
            html_template = self.env.get_template(self.html_template_name)
            text_template = self.env.get_template(self.text_template_name)

            subject = subject_template.render(context).strip().replace("\n", " ")
            html_body = html_template.render(context)
            text_body = text_template.render(context)

            logger.debug(f"Rendered report templates for profile: {context.get('profile_id', 'unknown')}")

            return {
                "subject": subject,
                "html_body": html_body,
                "text_body": text_body,
            }

        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e
