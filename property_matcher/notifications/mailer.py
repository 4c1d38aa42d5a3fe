"""Scheduled match report e-mails.

ReportMailer renders a ranking into the match report templates and sends it
to the buyer, retrying SMTP failures with exponential backoff.
"""

import logging
import time
from email.message import EmailMessage
from typing import Callable, Iterable, Mapping, Optional

from property_matcher.config.environment import EnvironmentConfig
from property_matcher.config.models import EmailConfig
from property_matcher.domain.models import Listing, RequirementProfile
from property_matcher.logging import get_logger
from property_matcher.matching.models import RankingResult

from .models import NotificationTemplateError, ReportDeliveryResult, SMTPDeliveryError
from .payloads import build_report_context
from .smtp_client import SMTPClient, build_sender_address, parse_recipients
from .templates import TemplateRenderer

logger = get_logger(__name__, component="notification")

MAX_RETRY_DELAY = 60.0


class ReportMailer:
    """Sends match reports by e-mail."""

    def __init__(
        self,
        env_config: EnvironmentConfig,
        email_config: Optional[EmailConfig] = None,
        template_renderer: Optional[TemplateRenderer] = None,
        smtp_client: Optional[SMTPClient] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize the mailer.

        Args:
            env_config: SMTP settings
            email_config: Retry settings
            template_renderer: Template renderer (creates default if None)
            smtp_client: SMTP client (creates default if None)
            sleep: Delay function used between retries
            logger_instance: Logger instance (uses module logger if None)
        """
        self.env_config = env_config
        self.email_config = email_config or EmailConfig()
        self.template_renderer = template_renderer or TemplateRenderer()
        self.smtp_client = smtp_client or SMTPClient()
        self.sleep = sleep
        self.logger = logger_instance or logger

    @property
    def enabled(self) -> bool:
        return self.env_config.smtp_enabled

    def send_report(
        self,
        profile: RequirementProfile,
        ranking: RankingResult,
        listings: Mapping[str, Listing],
        schedule_name: Optional[str] = None,
        extra_recipients: Iterable[str] = (),
    ) -> ReportDeliveryResult:
        """Render and send one report.

        The buyer's e-mail is the primary recipient; ``extra_recipients``
        (e.g. the assigned handler) are added after it.

        Returns:
            ReportDeliveryResult; delivery problems never raise
        """
        if not self.enabled:
            self.logger.info(
                f"Skipping report for profile {profile.id} - SMTP not configured",
                extra={"event": "report.skip", "reason": "smtp_disabled"},
            )
            return ReportDeliveryResult(profile.id, [], 0, "skipped", "SMTP not configured")

        try:
            recipients = parse_recipients([profile.email, *extra_recipients])
        except ValueError as e:
            self.logger.warning(
                f"Skipping report for profile {profile.id} - {e}",
                extra={"event": "report.skip", "reason": "no_recipient"},
            )
            return ReportDeliveryResult(profile.id, [], 0, "skipped", str(e))

        try:
            rendered = self.template_renderer.render(
                build_report_context(profile, ranking, listings, schedule_name)
            )
        except (NotificationTemplateError, KeyError) as e:
            error_msg = f"Report rendering failed: {e}"
            self.logger.error(error_msg, exc_info=True)
            return ReportDeliveryResult(profile.id, recipients, 0, "failed", error_msg)

        message = EmailMessage()
        message["Subject"] = rendered["subject"]
        message["From"] = build_sender_address(self.env_config)
        message["To"] = ", ".join(recipients)
        message.set_content(rendered["text_body"])
        message.add_alternative(rendered["html_body"], subtype="html")

        return self._deliver(profile.id, recipients, message)

    def _deliver(self, profile_id: str, recipients, message: EmailMessage) -> ReportDeliveryResult:
        max_attempts = self.email_config.max_retries + 1
        last_error = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = min(
                    self.email_config.retry_initial_delay
                    * (self.email_config.retry_backoff_multiplier ** (attempt - 2)),
                    MAX_RETRY_DELAY,
                )
                self.logger.warning(
                    f"Retrying report for profile {profile_id} (attempt {attempt}/{max_attempts}) "
                    f"after {delay:.1f}s delay",
                    extra={"event": "report.send.attempt", "attempt": attempt},
                )
                self.sleep(delay)

            try:
                self.smtp_client.send(message, self.env_config, self.email_config.use_tls)
                self.logger.info(
                    f"Report sent for profile {profile_id} to {', '.join(recipients)} "
                    f"(attempts: {attempt})",
                    extra={"event": "report.send.success", "attempt": attempt},
                )
                return ReportDeliveryResult(profile_id, recipients, attempt, "sent")
            except SMTPDeliveryError as e:
                last_error = str(e)
                self.logger.warning(
                    f"Report delivery failed for profile {profile_id} "
                    f"(attempt {attempt}/{max_attempts}): {e}",
                    extra={
                        "event": "report.send.failure",
                        "attempt": attempt,
                        "retry_remaining": attempt < max_attempts,
                    },
                )

        return ReportDeliveryResult(profile_id, recipients, max_attempts, "failed", last_error)
