"""
Structured JSON logging for the offline layer.

Log lines from the background context and from every foreground context
end up interleaved in the same collector, so each line is one JSON object
carrying the sync fields (``context_id``, ``operation_id``,
``operation_type``) needed to tell them apart.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

# Attributes every LogRecord has; anything else was passed through ``extra``
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

BACKGROUND_CONTEXT_ID = "background"


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fixed keys are ``timestamp`` (when the record was created, UTC),
    ``level``, ``logger`` and ``message``, plus ``exception`` when present.
    Fields passed via ``extra`` are added as-is, or as ``str()`` if they
    are not JSON-serializable.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            entry[key] = value

        return json.dumps(entry)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Send a logger's records to ``stream`` as JSON lines.

    Calling it again replaces the handler rather than adding a second one.

    Args:
        level: Level number or name ("debug" works too)
        logger_name: Logger to configure (default: root logger)
        stream: Destination (default: stderr, so command output on stdout stays clean)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Tags every record with the execution context that produced it.

    Per-call ``extra`` fields are kept; the adapter's own fields win on
    conflict so a record can never claim another context's id.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def get_context_logger(name: str, context_id: str = BACKGROUND_CONTEXT_ID) -> SyncLoggerAdapter:
    """Logger for a component running in a given execution context.

    Example:
        >>> log = get_context_logger(__name__, "tab-1")
        >>> log.info("Queued quest-completion")  # record carries context_id="tab-1"
    """
    return SyncLoggerAdapter(logging.getLogger(name), {"context_id": context_id})
