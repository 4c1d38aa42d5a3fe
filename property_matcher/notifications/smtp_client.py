"""SMTP client wrapper for report e-mail delivery.

This module provides a thin wrapper around Python's smtplib with support
for TLS/SSL, authentication, and proper connection lifecycle management.
"""

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Callable, Iterable, List, Optional

from email_validator import EmailNotValidError, validate_email

from property_matcher.config.environment import EnvironmentConfig

from .models import SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Wrapper around smtplib for sending email messages.

    Handles connection lifecycle, TLS/SSL negotiation and authentication.
    Connection factories are injectable so tests never open sockets.
    """

    def __init__(
        self,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def send(
        self,
        message: EmailMessage,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
    ) -> None:
        """Send an email message via SMTP.

        Port 465 uses implicit TLS; any other port uses STARTTLS when
        ``use_tls`` is set.

        Raises:
            SMTPDeliveryError: If message delivery fails
        """
        if not env_config.smtp_enabled:
            raise SMTPDeliveryError("SMTP is not configured (SMTP_HOST is unset)")

        smtp = None
        try:
            if env_config.smtp_port == 465:
                logger.debug(
                    f"Connecting to {env_config.smtp_host}:{env_config.smtp_port} with implicit TLS"
                )
                smtp = self.smtp_ssl_factory(
                    env_config.smtp_host,
                    env_config.smtp_port,
                    context=ssl.create_default_context(),
                )
            else:
                logger.debug(f"Connecting to {env_config.smtp_host}:{env_config.smtp_port}")
                smtp = self.smtp_factory(env_config.smtp_host, env_config.smtp_port)
                if use_tls:
                    smtp.starttls(context=ssl.create_default_context())

            if env_config.smtp_user and env_config.smtp_pass:
                smtp.login(env_config.smtp_user, env_config.smtp_pass)

            smtp.send_message(message)
            logger.debug(f"Message sent successfully to {message['To']}")

        except smtplib.SMTPException as e:
            error_msg = f"SMTP error during message delivery: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        except OSError as e:
            error_msg = f"Network error during SMTP connection: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def parse_recipients(recipients: Iterable[Optional[str]]) -> List[str]:
    """Validate and normalise e-mail addresses, dropping blanks and duplicates.

    Raises:
        ValueError: If any address is invalid or none remain
    """
    validated: List[str] = []
    for email in recipients:
        if not email or not email.strip():
            continue
        try:
            normalized = validate_email(email.strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValueError(f"Invalid email address: '{email}' - {e}") from e
        if normalized not in validated:
            validated.append(normalized)

    if not validated:
        raise ValueError("No valid email addresses given")
    return validated


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' address for outgoing emails.

    Uses SMTP_SENDER_NAME with SMTP_USER if available, otherwise falls back
    to a noreply address at the SMTP host.
    """
    if env_config.smtp_user and "@" in env_config.smtp_user:
        sender_email = env_config.smtp_user
    else:
        sender_email = f"noreply@{env_config.smtp_host}"

    return f"{env_config.smtp_sender_name} <{sender_email}>"
