"""Logging setup for bux-oci.

Everything logs below the ``bux_oci`` logger. Pull-scoped messages carry
context fields (reference, digest) that are appended as ``key=value``.
"""

import logging
import sys
from typing import Any, MutableMapping

LOGGER_NAME = "bux_oci"

# Chatty third-party loggers, quiet unless bux-oci itself is at DEBUG
_WIRE_LOGGERS = ("httpx", "httpcore")

_PLAIN_FORMAT = "%(levelname)s: %(message)s"
_STRUCTURED_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class ContextFormatter(logging.Formatter):
    """Appends a record's context fields to the formatted message."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "context", None)
        if not context:
            return message
        return f"{message} " + " ".join(f"{key}={_field(value)}" for key, value in context.items())


def _field(value: Any) -> str:
    text = str(value)
    if not text or any(c.isspace() for c in text):
        return repr(text)
    return text


def configure_logging(
    level: str = "INFO",
    format_string: str | None = None,
    structured: bool = False,
) -> None:
    """Install a stderr handler on the ``bux_oci`` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_string: Custom format string
        structured: Prefix records with time and logger name

    Raises:
        ConfigurationError: If the level name is unknown
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        from bux_oci.utils.errors import ConfigurationError

        raise ConfigurationError(f"Unknown log level: {level}", config_key="logging.level")

    if format_string is None:
        format_string = _STRUCTURED_FORMAT if structured else _PLAIN_FORMAT

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ContextFormatter(format_string))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers = [handler]
    logger.propagate = False

    wire_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _WIRE_LOGGERS:
        logging.getLogger(name).setLevel(wire_level)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, e.g. ``get_logger("store.blobs")`` -> ``bux_oci.store.blobs``."""
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed context fields to every record.

    Fields passed per call via ``extra={"context": {...}}`` are merged over
    the adapter's own.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = {**(self.extra or {}), **extra.get("context", {})}
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger_with_context(name: str, **context: Any) -> ContextAdapter:
    """Logger whose records all carry ``context``.

    Example:
        log = get_logger_with_context("core.puller", reference="docker.io/library/alpine:3.20")
        log.info("Pulled")  # INFO: Pulled reference=docker.io/library/alpine:3.20
    """
    return ContextAdapter(get_logger(name), context)
