"""Logging set-up for the compliance engine.

Recompute decisions must be replayable from the logs, so every record can
carry the facility, template or covenant it concerns, the recompute step and
the tick timestamp. Modules attach these with ``extra=log_context(...)``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Context keys in the order the standard format prints them
CONTEXT_FIELDS = ("facility_id", "obligation_id", "covenant_id", "step", "tick")

NOISY_LOGGERS = ("confluent_kafka", "psycopg", "faker")


def setup_logging(
    level: str = "INFO",
    format_type: str = "standard",
) -> None:
    """Configure root logging for the engine and its scripts.

    Parameters
    ----------
    level : str
        Log level name; unknown names fall back to INFO.
    format_type : str
        ``"standard"`` for one pipe-separated line per record with context
        appended, ``"json"`` for one JSON object per record.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter: logging.Formatter = JsonFormatter() if format_type == "json" else ContextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("compliance_engine").setLevel(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_context(**fields: Any) -> dict[str, Any]:
    """Build the ``extra`` argument for a log call, dropping empty fields.

    Datetimes are rendered as ISO strings so tick timestamps read the same
    in both formats.
    """
    context = {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in fields.items()
        if value is not None
    }
    return {"extra": context}


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "extra", None) or {}


class ContextFormatter(logging.Formatter):
    """Pipe-separated format with ``key=value`` context appended."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        known = [key for key in CONTEXT_FIELDS if key in context]
        others = sorted(key for key in context if key not in CONTEXT_FIELDS)
        pairs = " ".join(f"{key}={context[key]}" for key in known + others)
        if not pairs:
            return line
        # Keep tracebacks after the context so the first line stays greppable
        first, sep, rest = line.partition("\n")
        return f"{first} | {pairs}{sep}{rest}"


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    The timestamp is the record's creation time in UTC. Context from
    :func:`log_context` is merged at the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(_context(record))
        return json.dumps(log_data, default=str)
