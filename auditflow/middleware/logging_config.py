"""
Logging setup for the workflow service.

One stderr handler on the root logger:
    development / testing   ReadableFormatter, one line per record with the
                            engagement / workpaper scope appended
    production              JSONFormatter, one object per line

Services log with ``extra={...}``; the keys in ``EXTRA_FIELDS`` are lifted
into the JSON output. ``RequestContextFilter`` stamps ``request_id`` on
every record emitted while a request is being served, so a transition and
its log append can be correlated.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context

EXTRA_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "tenant_id",
    "user_id",
    "engagement_id",
    "workpaper_id",
    "action",
    "from_state",
    "to_state",
    "signoff_type",
    "error_code",
    "reason",
    "event_type",
)

# Shown inline by the readable formatter, in this order.
_SCOPE_FIELDS = ("engagement_id", "workpaper_id", "action", "signoff_type")


class RequestContextFilter(logging.Filter):
    """Attach the current request id to records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_app_context():
            record.request_id = g.get("request_id")
        return True


class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, getattr(record, key))
            for key in EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"]

        scope = [f"{k}={getattr(record, k)}" for k in _SCOPE_FIELDS if getattr(record, k, None) is not None]
        if scope:
            parts.append(f"({' '.join(scope)})")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler according to the app's environment.

    ``LOG_LEVEL`` overrides the default (INFO in production, DEBUG
    elsewhere). Existing root handlers are replaced so repeated app
    creation in tests does not duplicate output.
    """
    testing = app.config.get("TESTING", False)
    json_output = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if json_output else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for chatty in ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration"):
        logging.getLogger(chatty).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging ready (level=%s, json=%s)", level_name, json_output)
