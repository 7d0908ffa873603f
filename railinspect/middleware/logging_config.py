"""
Structured logging for the inspection service.

Services pass inspection context through ``extra=`` (session_id, defect_id,
module_type, coach_number, principal_id, event_type). ``JSONFormatter``
lifts those keys to top-level fields so SESSION INIT decisions and
lifecycle events can be filtered in the aggregator; ``ReadableFormatter``
prints them as a short ``[MODULE coach #session]`` tag.

LOG_LEVEL sets the level; LOG_FORMAT (``json`` | ``readable``) overrides the
per-environment default.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
INSPECTION_KEYS = (
    "principal_id",
    "session_id",
    "defect_id",
    "module_type",
    "coach_number",
    "event_type",
    "outcome",
)

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": f"{record.module}:{record.lineno}",
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in REQUEST_KEYS + INSPECTION_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        return json.dumps(entry, ensure_ascii=False, default=str)


def _context_tag(record: logging.LogRecord) -> str:
    parts = [str(getattr(record, key)) for key in ("module_type", "coach_number")
             if getattr(record, key, None)]
    session_id = getattr(record, "session_id", None)
    if session_id is not None:
        parts.append(f"#{session_id}")
    return f" [{' '.join(parts)}]" if parts else ""


class ReadableFormatter(logging.Formatter):
    """Single-line coloured output for a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        duration = getattr(record, "duration_ms", None)
        took = f" ({duration:.0f}ms)" if duration is not None else ""
        line = f"{ts} {level} {record.name}{_context_tag(record)}: {record.getMessage()}{took}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _pick_formatter(is_prod: bool) -> logging.Formatter:
    wanted = os.getenv("LOG_FORMAT", "").strip().lower()
    if wanted == "json" or (not wanted and is_prod):
        return JSONFormatter()
    return ReadableFormatter(color=sys.stderr.isatty())


def configure_logging(app):
    """
    Install one stderr handler on the root logger.

    Production defaults to JSON at INFO; development and tests to readable
    output at DEBUG. Re-running replaces the handler, so test apps built
    one after another do not duplicate output.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = _pick_formatter(is_prod)

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, type(formatter).__name__)
