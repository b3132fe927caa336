"""Logging configuration helpers for artifact_deployer."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

from artifact_deployer.security import SecretMask, redact_sensitive_text

_LOGGER_NAME = "artifact_deployer"
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class RedactingFilter(logging.Filter):
    """Rewrite each record so registered secrets never reach a handler."""

    def __init__(self, mask: SecretMask | None = None) -> None:
        super().__init__()
        self.mask = mask

    def filter(self, record: logging.LogRecord) -> bool:
        """Render the message once, redact it, and drop the format args."""
        record.msg = redact_sensitive_text(record.getMessage(), self.mask)
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact_sensitive_text(record.exc_text, self.mask)
        return True


class JsonLogFormatter(logging.Formatter):
    """Format log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        """Serialize a log record in JSON format."""
        payload = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_text:
            payload["exception"] = record.exc_text
        return json.dumps(payload)


def _close_handlers(logger: logging.Logger) -> None:
    """Detach and close all handlers currently bound to the logger."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _ensure_redaction(logger: logging.Logger) -> None:
    """Attach the redacting filter once."""
    if not any(isinstance(item, RedactingFilter) for item in logger.filters):
        logger.addFilter(RedactingFilter())


def configure_logging(
    *,
    log_file: Path | None,
    verbose: bool,
    json_format: bool = False,
) -> logging.Logger:
    """Configure stderr and optional file logging for one CLI run.

    Logging is reconfigured on every invocation and the log file is truncated
    so each run has an isolated history.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    _close_handlers(logger)
    _ensure_redaction(logger)

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False
    formatter: logging.Formatter = (
        JsonLogFormatter() if json_format else logging.Formatter(_TEXT_FORMAT)
    )

    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_file is not None:
        log_path = log_file.expanduser().resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger() -> logging.Logger:
    """Return the package logger (configured or with null handler)."""
    logger = logging.getLogger(_LOGGER_NAME)
    _ensure_redaction(logger)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger
