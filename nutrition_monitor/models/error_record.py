"""Recorded errors and their heuristic severity."""

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

ERROR_HISTORY_LIMIT = 1000


class Severity(str, Enum):
    """Coarse severity assigned to a recorded error."""
    INFO = 'info'
    WARNING = 'warning'
    CRITICAL = 'critical'


# Checked in order; the first group with a matching substring wins
_SEVERITY_RULES = (
    (('connection', 'timeout'), Severity.CRITICAL),
    (('auth', 'permission'), Severity.WARNING),
    (('validation', 'invalid'), Severity.INFO),
)


def classify_severity(message: str) -> Severity:
    """Classify an error message (case-insensitive substring match).

    Connection and timeout problems are critical, auth and permission problems
    are warnings, validation problems are informational. Anything else is a
    warning.
    """
    lowered = (message or '').lower()
    for needles, severity in _SEVERITY_RULES:
        if any(needle in lowered for needle in needles):
            return severity
    return Severity.WARNING


def format_stack(error: BaseException) -> Optional[str]:
    if error.__traceback__ is None:
        return None
    return ''.join(traceback.format_exception(type(error), error, error.__traceback__))


@dataclass
class ErrorRecord:
    timestamp: str
    type: str
    message: str
    severity: Severity
    stack: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        error: BaseException,
        context: Optional[Dict[str, Any]],
        timestamp: str,
    ) -> 'ErrorRecord':
        message = str(error)
        return cls(
            timestamp=timestamp,
            type=error_type,
            message=message,
            severity=classify_severity(message),
            stack=format_stack(error),
            context=context or {},
        )

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'type': self.type,
            'message': self.message,
            'stack': self.stack,
            'context': self.context,
            'severity': self.severity.value,
        }
