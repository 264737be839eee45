"""
Structured logging configuration.

- Development: human-readable colored format, lifecycle ids appended
- Production: JSON format (log aggregator compatible)
- Log level: controlled via LOG_LEVEL env variable

Services attach lifecycle context through ``extra={...}``:

    logger.info("Submission %s approved", sid,
                extra={"event_type": "submission.approve", "submission_id": sid})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Lifecycle entity ids, in chain order
ENTITY_KEYS = (
    "submission_id",
    "approval_id",
    "record_id",
    "release_id",
    "user_id",
    "actor_user_id",
)

# event_type comes from every service; table/column from the schema adapter;
# method/path from the blueprint error handlers
CONTEXT_KEYS = ("event_type",) + ENTITY_KEYS + ("table", "column", "degraded", "method", "path")


def log_context(record: logging.LogRecord) -> dict:
    """Known ``extra`` keys present on *record*, in CONTEXT_KEYS order."""
    context = {}
    for key in CONTEXT_KEYS:
        val = getattr(record, key, None)
        if val is not None:
            context[key] = val
    return context


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        log_entry.update(log_context(record))
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development.

    ``12:00:01 INFO     docflow.services.transition_engine [submission.approve]:
    Submission 4 approved by 2 (submission=4 approval=1 actor_user=2)``
    """

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        context = log_context(record)
        event = context.get("event_type")
        event_str = f" [{event}]" if event else ""

        ids = [f"{key[:-3]}={context[key]}" for key in ENTITY_KEYS if key in context]
        if context.get("degraded"):
            ids.append("degraded")
        ids_str = f" ({' '.join(ids)})" if ids else ""

        msg = record.getMessage()
        base = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}{event_str}: {msg}{ids_str}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up structured logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in dev, INFO in prod).
    Development  → ReadableFormatter on stderr
    Production   → JSONFormatter on stderr
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = JSONFormatter() if is_prod else ReadableFormatter()

    # Cleared first so repeated create_app() calls in tests do not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    # Engine SQL echo and request lines stay at WARNING
    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if is_prod else "readable")
