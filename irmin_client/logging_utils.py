"""
Structured JSON logging for the client.

Streams and watches are long-lived, so their records carry the stream URL,
a stream number and the watched path as fields. configure_structured_logging()
switches the ``irmin_client`` loggers to one JSON object per line; the
client calls it when ClientConfig.log_level is set.
"""

import itertools
import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

from .value import value_to_str

_stream_ids = itertools.count(1)

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Stream context goes first so interleaved watches line up when read
_CONTEXT_FIELDS = ("stream", "url", "path")


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return value_to_str(bytes(value))
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields: ``timestamp`` (record creation time, ISO 8601 UTC), ``level``,
    ``logger``, the stream context fields when present, ``message``, any
    other ``extra`` fields, and ``exception`` for records with exc_info.
    Byte values, such as Irmin keys and values, are rendered as text.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        fields = vars(record)
        for key in _CONTEXT_FIELDS:
            if key in fields:
                entry[key] = _jsonable(fields[key])
        entry["message"] = record.getMessage()

        for key, value in fields.items():
            if key in _RECORD_ATTRS or key in entry or key.startswith("_"):
                continue
            entry[key] = _jsonable(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


def configure_structured_logging(
    level: int | str = logging.INFO,
    stream: IO[str] | None = None,
    logger_name: str = "irmin_client",
) -> logging.Logger:
    """
    Send the client's log records to ``stream`` as JSON lines.

    Calling it again replaces the handler installed by the previous call;
    handlers added by the application are left alone.

    Args:
        level: Level number or name, e.g. ``"DEBUG"``
        stream: Text stream to write to (default: stdout)
        logger_name: Logger to configure (default: the package logger)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        if getattr(handler, "_irmin_structured", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    handler._irmin_structured = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


class StreamLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps stream context on every record.

    Each adapter gets a process-unique stream number, so output from
    concurrent watches on the same URL can be told apart.
    """

    def __init__(self, logger: logging.Logger, url: str, **extra: Any):
        super().__init__(logger, {"url": url, "stream": next(_stream_ids), **extra})

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        kwargs["extra"] = {**(kwargs.get("extra") or {}), **(self.extra or {})}
        return msg, kwargs
