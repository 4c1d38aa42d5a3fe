"""Environment variable loading and validation."""

import os
from typing import Mapping, Optional
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/property_matcher.db"

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder.

    SMTP settings are optional as a group: when SMTP_HOST is unset, report
    e-mails are disabled and ``smtp_enabled`` is False. The text-generation
    endpoint is optional too; without it drafts are reported unavailable.
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        textgen_api_url: Optional[str] = None,
        textgen_api_key: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_sender_name: Optional[str] = None,
        log_level: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.textgen_api_url = textgen_api_url
        self.textgen_api_key = textgen_api_key
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port or 587
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_sender_name = smtp_sender_name or "Property Matcher"
        self.log_level = log_level

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host)

    @property
    def textgen_enabled(self) -> bool:
        return bool(self.textgen_api_url)


def load_environment_config(environ: Optional[Mapping[str, str]] = None) -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Optional environment variables:
    - DATABASE_URL: SQLAlchemy database URL (default: sqlite:///./data/property_matcher.db)
    - TEXTGEN_API_URL: Text-generation endpoint used to draft outbound messages
    - TEXTGEN_API_KEY: Bearer token for the text-generation endpoint
    - SMTP_HOST / SMTP_PORT: SMTP server for report e-mails (group is optional)
    - SMTP_USER / SMTP_PASS: SMTP credentials (both or neither)
    - SMTP_SENDER_NAME: Display name for the e-mail sender
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is invalid
    """
    env = os.environ if environ is None else environ
    errors = []

    def _get(name: str) -> Optional[str]:
        value = env.get(name)
        if value is None:
            return None
        value = value.strip()
        return value or None

    database_url = _get("DATABASE_URL")
    textgen_api_url = _get("TEXTGEN_API_URL")
    textgen_api_key = _get("TEXTGEN_API_KEY")
    smtp_host = _get("SMTP_HOST")
    smtp_port_str = _get("SMTP_PORT")
    smtp_user = _get("SMTP_USER")
    smtp_pass = _get("SMTP_PASS")
    smtp_sender_name = _get("SMTP_SENDER_NAME")
    log_level = _get("LOG_LEVEL")

    if textgen_api_url:
        parsed = urlparse(textgen_api_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(
                f"Invalid TEXTGEN_API_URL: '{textgen_api_url}'. Must be an http(s) URL."
            )

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if smtp_port < 1 or smtp_port > 65535:
                errors.append(
                    f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535."
                )
        except ValueError:
            errors.append(
                f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer."
            )

    if not smtp_host and any([smtp_port_str, smtp_user, smtp_pass]):
        errors.append(
            "SMTP_PORT/SMTP_USER/SMTP_PASS are set but SMTP_HOST is not. "
            "Set SMTP_HOST or remove the other SMTP variables."
        )

    if smtp_user and not smtp_pass:
        errors.append(
            "SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication."
        )
    elif smtp_pass and not smtp_user:
        errors.append(
            "SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication."
        )

    if smtp_user and "@" in smtp_user:
        try:
            validate_email(smtp_user, check_deliverability=False)
        except EmailNotValidError as e:
            errors.append(f"Invalid email address in SMTP_USER: '{smtp_user}' - {e}")

    if log_level and log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(_VALID_LOG_LEVELS)}"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Leave all SMTP_* variables unset to disable report e-mails",
                "Verify SMTP_PORT is a number between 1 and 65535",
            ],
        )

    return EnvironmentConfig(
        database_url=database_url,
        textgen_api_url=textgen_api_url,
        textgen_api_key=textgen_api_key,
        smtp_host=smtp_host,
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_sender_name=smtp_sender_name,
        log_level=log_level.upper() if log_level else None,
    )
