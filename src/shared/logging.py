"""
JSON-lines logging for the assessment engine.

Every record carries a UTC timestamp, and the learner_id, session_id and
action fields when the caller supplies them. Any other `extra` keys are
emitted as additional fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from src.shared.config import settings

CONTEXT_FIELDS = ("learner_id", "session_id", "action")

# Attributes every LogRecord has; never treated as extra fields
_BASE_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Renders each record as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        for key, value in vars(record).items():
            if key not in _BASE_RECORD_ATTRS and key not in entry:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Route the root logger to stdout and, if configured, a log file.

    Args:
        log_level: Level name; defaults to settings.log_level
        log_file: Extra file sink; defaults to settings.log_file
    """
    level = (log_level or settings.log_level).upper()
    log_file = log_file or settings.log_file
    formatter = StructuredFormatter()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level))
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    learner_id: Optional[str] = None,
    action: Optional[str] = None,
    session_id: Optional[str] = None,
    **kwargs
):
    """Log `message` with learner/session context plus any keyword fields."""
    context = {"learner_id": learner_id, "action": action, "session_id": session_id}
    extra = {key: value for key, value in context.items() if value}
    extra.update(kwargs)
    logger.log(level, message, extra=extra)


# Initialize logging on import
setup_logging()
