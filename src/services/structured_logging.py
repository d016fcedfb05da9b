"""
Structured logging for the job-posting credit ledger.

Every record carries the request id and authenticated user (when there is a
request), plus the keyword fields passed at the call site, so a checkout, its
webhook delivery and the credits later claimed against it can be followed by
grepping for one purchase or session id.

Output is one JSON object per line unless ``JOBCREDITS_LOG_JSON=false``, in
which case records are rendered as ``message key=value ...`` for local runs.
"""

import os
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict

from flask import Flask, g, has_request_context, request

from src.services.request_context import get_request_context

LEDGER_LOGGERS = [
    'jobcredits.checkout',
    'jobcredits.fulfillment',
    'jobcredits.ledger',
    'jobcredits.sweep',
    'jobcredits.audit',
    'jobcredits.errors',
    'jobcredits.requests',
]

# LogRecord attribute carrying the keyword fields of a call
_RECORD_FIELDS = 'fields'


class StructuredFormatter(logging.Formatter):
    """Render records as JSON lines, or as text with trailing key=value pairs."""

    def __init__(self, json_enabled: bool = True):
        super().__init__('%(asctime)s %(levelname)s %(name)s: %(message)s')
        self.json_enabled = json_enabled

    def _fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if has_request_context():
            fields.update(get_request_context())
        fields.update(getattr(record, _RECORD_FIELDS, None) or {})
        return fields

    def format(self, record: logging.LogRecord) -> str:
        fields = self._fields(record)

        if not self.json_enabled:
            text = super().format(record)
            if fields:
                text += " " + " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
            return text

        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(fields)
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that takes context as keyword arguments::

        logger.info("Created checkout session", session_id=sid, user_id=uid)
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _emit(self, level: int, message: str, exc_info=None, **fields):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, message, exc_info=exc_info,
                            extra={_RECORD_FIELDS: fields})

    def log(self, level: int, message: str, **fields):
        self._emit(level, message, **fields)

    def isEnabledFor(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def debug(self, message: str, **fields):
        self._emit(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields):
        self._emit(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self._emit(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self._emit(logging.ERROR, message, **fields)

    def exception(self, message: str, **fields):
        self._emit(logging.ERROR, message, exc_info=True, **fields)

    def critical(self, message: str, **fields):
        self._emit(logging.CRITICAL, message, **fields)

    def log_ledger_event(self, event: str, level: int = logging.INFO, **fields):
        """A purchase or credit changed state (pending, completed, claimed, ...)."""
        self._emit(level, f"Ledger event: {event}", event_type='ledger',
                   ledger_event=event, **fields)

    def log_integrity_violation(self, violation: str, **fields):
        """
        Something tried to break a ledger invariant: a webhook for a session we
        never opened, a second bind of one credit, and so on. Always logged at
        error level with every id available so it can be audited by hand.
        """
        self._emit(logging.ERROR, f"Integrity violation: {violation}",
                   event_type='integrity', violation=violation, **fields)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)


def configure_logging(app: Flask):
    """Install the structured handler on the root logger."""
    json_enabled = os.environ.get('JOBCREDITS_LOG_JSON', 'true').lower() == 'true'
    level_name = os.environ.get('LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(json_enabled=json_enabled))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    app.logger.setLevel(level)
    for name in LEDGER_LOGGERS:
        logging.getLogger(name).setLevel(level)

    get_logger('jobcredits.config').info(
        "Logging configured", json_enabled=json_enabled, log_level=level_name)


class LoggingMiddleware:
    """One access-log line per API request, at a level matching the status."""

    SKIP_PATHS = ('/healthz', '/metrics')

    def __init__(self, app: Flask):
        self.logger = get_logger('jobcredits.requests')
        app.before_request(self._mark_start)
        app.after_request(self._log_response)

    def _mark_start(self):
        g.access_log_start = time.perf_counter()

    def _log_response(self, response):
        if request.path in self.SKIP_PATHS:
            return response

        started = getattr(g, 'access_log_start', None)
        duration_ms = round((time.perf_counter() - started) * 1000, 2) if started else None

        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING if response.status_code != 402 else logging.INFO
        else:
            level = logging.INFO

        self.logger.log(
            level,
            f"{request.method} {request.path} {response.status_code}",
            event_type='access',
            endpoint=request.endpoint,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        return response


def init_logging(app: Flask):
    configure_logging(app)
    LoggingMiddleware(app)
    get_logger('jobcredits.startup').info(
        "Application starting", debug=app.debug, testing=app.testing)
