"""Notification channels.

This module provides:
- NotificationService: Stores notifications addressed to handlers
- ReportMailer: E-mails scheduled match reports to buyers
- TemplateRenderer: Jinja2-based report template rendering
- SMTPClient: SMTP wrapper with TLS/SSL support
- Payload builders for handler notifications and report templates
"""

from .mailer import ReportMailer
from .models import (
    NotificationAck,
    NotificationError,
    NotificationRequest,
    NotificationTemplateError,
    ReportDeliveryResult,
    SMTPDeliveryError,
)
from .payloads import build_handler_notification, build_report_context
from .service import NotificationService
from .smtp_client import SMTPClient, build_sender_address, parse_recipients
from .templates import TemplateRenderer

__all__ = [
    # Services
    "NotificationService",
    "ReportMailer",
    # Models and results
    "NotificationRequest",
    "NotificationAck",
    "ReportDeliveryResult",
    # Exceptions
    "NotificationError",
    "NotificationTemplateError",
    "SMTPDeliveryError",
    # Components
    "TemplateRenderer",
    "SMTPClient",
    # Utilities
    "build_handler_notification",
    "build_report_context",
    "build_sender_address",
    "parse_recipients",
]
