"""
Structured logging configuration.

Every record emitted while a request is active is stamped with the request id
and acting user, so service-layer lines (approval decisions, stage changes)
can be joined to the access line written by app.middleware.timing.

- Production: one JSON object per line
- Development / testing: readable single line with a short context suffix
- Level: LOG_LEVEL config key (env-driven, see app.config)
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Record attributes copied into the output when present
CONTEXT_FIELDS = (
    "request_id",
    "actor",
    "solution_id",
    "approval_id",
    "workflow_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

# Shown in the readable suffix, in this order
_SHORT_KEYS = {
    "request_id": "req",
    "actor": "by",
    "solution_id": "solution",
    "approval_id": "approval",
    "workflow_id": "workflow",
}

_HANDLER_NAME = "approval-tracker"


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class RequestContextFilter(logging.Filter):
    """Fill request_id / actor from the active request unless the caller set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor", None) is None:
                record.actor = request.headers.get("X-User") or None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [req=… solution=…] (12ms)``"""

    LEVEL_COLORS = {
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
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        ctx = _context(record)
        tags = " ".join(f"{short}={ctx[key]}" for key, short in _SHORT_KEYS.items() if key in ctx)
        if tags:
            line += f" [{tags}]"
        if "duration_ms" in ctx:
            line += f" ({ctx['duration_ms']:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install the app's root handler.

    Calling it again (one app per test module, several apps in one process)
    replaces the handler it installed before and leaves foreign handlers such
    as pytest's capture alone.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter(color=sys.stderr.isatty()))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "JSON" if is_prod else "readable")
