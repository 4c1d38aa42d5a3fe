"""Structured logging helpers: component-tagged loggers and scoped context."""

import logging
from typing import Optional, Union


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that tags records with a component name.

    Per-call ``extra`` values take precedence over the adapter's own fields.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Get a logger with an optional default component field.

    Args:
        name: Logger name (typically __name__)
        component: Component identifier injected into every record
            (e.g. "matching", "dispatch", "scheduler")

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="dispatch")
        >>> logger.info("Alert created", extra={"event": "dispatch.alert.created"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
