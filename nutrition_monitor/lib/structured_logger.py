"""Structured Logger with JSON Formatting.

Console logging for the monitoring service. Every record is emitted as a single
JSON object carrying the correlation ID plus any keyword context passed by the
caller, so operational logs stay machine-readable next to the category files.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from nutrition_monitor.lib.distributed_tracing import get_correlation_id
from nutrition_monitor.lib.time_utils import utc_now_iso

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord('', logging.INFO, '', 0, '', None, None)).keys()
) | {'message', 'asctime'}

SENSITIVE_KEYS = ('token', 'password', 'service_role_key', 'api_key', 'authorization')


def _scrub(context: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys that must never reach a log line."""
    return {k: v for k, v in context.items() if k.lower() not in SENSITIVE_KEYS}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            'timestamp': utc_now_iso(),
            'level': record.levelname,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'request_id': get_correlation_id(),
        }

        # Context passed through `extra` (query_name, duration_ms, alert_type, ...)
        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith('_')
        }
        log_data.update(_scrub(extra))

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        return json.dumps(log_data, default=str)


class StructuredLogger:
    """Structured logger with JSON formatting.

    Usage:
        logger = StructuredLogger(__name__)
        logger.info('Slow query detected', query_name='load_posts', duration_ms=1500)
        logger.error('Failed to store metrics', exc_info=True)
    """

    def __init__(self, name: str):
        """Initialize structured logger.

        Args:
            name: Logger name (typically module name)
        """
        self.logger = logging.getLogger(name)

        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.logger.setLevel(getattr(logging, log_level, logging.INFO))

        # Remove existing handlers to avoid duplicates on re-import
        self.logger.handlers.clear()

        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        self.logger.addHandler(handler)

        # Propagate so pytest's caplog (root handler) still sees records
        self.logger.propagate = True

    def info(self, message: str, **extra: Any) -> None:
        """Log INFO level message with keyword context."""
        self.logger.info(message, extra=_scrub(extra), stacklevel=2)

    def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        """Log WARNING level message.

        Args:
            message: Log message
            exc_info: Include exception traceback
            **extra: Additional context
        """
        self.logger.warning(message, exc_info=exc_info, extra=_scrub(extra), stacklevel=2)

    def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
        """Log ERROR level message.

        Args:
            message: Log message
            exc_info: Include exception traceback
            **extra: Additional context
        """
        self.logger.error(message, exc_info=exc_info, extra=_scrub(extra), stacklevel=2)

    def debug(self, message: str, **extra: Any) -> None:
        """Log DEBUG level message with keyword context."""
        self.logger.debug(message, extra=_scrub(extra), stacklevel=2)

    def log_event(self, event: str, level: str = 'INFO', context: Optional[Dict[str, Any]] = None) -> None:
        """Log a named monitoring event (e.g. 'monitor.started', 'alert.slow_query').

        Args:
            event: Dotted event name
            level: Log level name (INFO, WARNING, ERROR, DEBUG)
            context: Additional context dictionary (sensitive keys are dropped)
        """
        log_method = getattr(self.logger, level.lower(), self.logger.info)
        log_method(event, extra={'event': event, **_scrub(context or {})}, stacklevel=2)
