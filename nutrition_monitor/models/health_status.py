"""Health check results.

Sub-checks go from 'unknown' straight to whatever the latest probe says. There
is no hysteresis: one bad sample shows up immediately and one good sample
clears it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

HEALTHY = 'healthy'
WARNING = 'warning'
SLOW = 'slow'
ERROR = 'error'
UNKNOWN = 'unknown'


@dataclass
class CheckResult:
    """Outcome of one sub-check (database, supabase or system)."""

    status: str
    message: str = ''
    response_time: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'message': self.message,
            'response_time': self.response_time,
            **self.details,
        }


def calculate_overall_health(*statuses: str) -> str:
    """Worst status wins: error > warning/slow > healthy."""
    if ERROR in statuses:
        return ERROR
    if WARNING in statuses or SLOW in statuses:
        return WARNING
    return HEALTHY


@dataclass
class HealthStatus:
    database: CheckResult = field(default_factory=lambda: CheckResult(UNKNOWN))
    supabase: CheckResult = field(default_factory=lambda: CheckResult(UNKNOWN))
    system: CheckResult = field(default_factory=lambda: CheckResult(UNKNOWN))
    timestamp: Optional[str] = None
    overall: str = UNKNOWN

    @classmethod
    def from_checks(cls, database: CheckResult, supabase: CheckResult, system: CheckResult, timestamp: str) -> 'HealthStatus':
        return cls(
            database=database,
            supabase=supabase,
            system=system,
            timestamp=timestamp,
            overall=calculate_overall_health(database.status, supabase.status, system.status),
        )

    @property
    def is_healthy(self) -> bool:
        return self.overall == HEALTHY

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'last_check': self.timestamp,
            'overall': self.overall,
            'database': self.database.to_dict(),
            'supabase': self.supabase.to_dict(),
            'system': self.system.to_dict(),
        }
