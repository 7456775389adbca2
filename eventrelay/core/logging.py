"""Structured JSON logging for eventrelay.

Components log through plain ``logging.getLogger("eventrelay.<part>")``
children. ``configure_relay_logger`` puts a single JSON handler on the
``eventrelay`` parent, so every child shares it.
"""

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from eventrelay.core.event import AssembledBatch

RELAY_LOGGER = "eventrelay"

# Derived at import time so new LogRecord attributes (like taskName) are skipped
_STANDARD_LOGRECORD_KEYS: frozenset[str] = frozenset(
    logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
    ).__dict__.keys()
)

# Emitted first, in this order, when a record carries them
RELAY_LOG_FIELDS = ("batch_id", "fingerprint", "event_count", "method", "state", "attempt")


class JSONFormatter(logging.Formatter):
    """One JSON object per line: UTC timestamp, level, logger, relay fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name)) for name in RELAY_LOG_FIELDS if hasattr(record, name)
        )
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_LOGRECORD_KEYS and key not in entry
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)

        try:
            return json.dumps(entry, default=str)
        except (TypeError, ValueError):
            return str(entry)


def batch_fields(batch: "AssembledBatch", **fields: Any) -> dict[str, Any]:
    """``extra=`` mapping for a log line about one assembled batch."""
    return {
        "batch_id": batch.batch_id,
        "fingerprint": batch.fingerprint,
        "event_count": len(batch),
        **fields,
    }


def configure_relay_logger(
    level: int | None = None, stream: TextIO | None = None
) -> logging.Logger:
    """Attach the JSON handler to the ``eventrelay`` logger and return it.

    Safe to call repeatedly: the handler is installed once and later calls
    only change the level.

    Args:
        level: Level to set. None keeps an earlier level, INFO on first use.
        stream: Handler destination on first use. Defaults to stderr.
    """
    logger = logging.getLogger(RELAY_LOGGER)
    if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
    if level is not None:
        logger.setLevel(level)
    elif logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger
