"""Reduced metrics snapshot persisted once per realtime collection tick."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SnapshotHealth(BaseModel):
    overall: str = 'unknown'
    database: Optional[str] = None
    supabase: Optional[str] = None
    system: Optional[str] = None


class SnapshotPerformance(BaseModel):
    total_queries: int = 0
    avg_query_time: float = 0.0
    error_rate: float = 0.0


class SnapshotMemory(BaseModel):
    usage: float = Field(default=0.0, description='Fraction of host memory in use')


class PersistedMetricsSnapshot(BaseModel):
    """One JSON line in data/monitoring/metrics-<date>.jsonl.

    Only the fields needed for trend analysis survive; the full realtime
    snapshot (query lists, errors, activity) is never written to disk.
    """

    timestamp: str
    health: SnapshotHealth = Field(default_factory=SnapshotHealth)
    performance: SnapshotPerformance = Field(default_factory=SnapshotPerformance)
    memory: SnapshotMemory = Field(default_factory=SnapshotMemory)

    @classmethod
    def from_realtime_metrics(cls, metrics: Dict[str, Any]) -> 'PersistedMetricsSnapshot':
        """Project a realtime snapshot (timestamp, performance report, health) down to disk form."""
        health = metrics.get('health') or {}
        report = metrics.get('performance') or {}
        summary = report.get('summary') or {}
        current = (report.get('system_metrics') or {}).get('current') or {}

        return cls(
            timestamp=metrics['timestamp'],
            health=SnapshotHealth(
                overall=health.get('overall', 'unknown'),
                database=_status_of(health.get('database')),
                supabase=_status_of(health.get('supabase')),
                system=_status_of(health.get('system')),
            ),
            performance=SnapshotPerformance(
                total_queries=summary.get('total_queries', 0),
                avg_query_time=summary.get('avg_query_time', 0.0),
                error_rate=summary.get('error_rate', 0.0),
            ),
            memory=SnapshotMemory(usage=(current.get('memory') or {}).get('usage_ratio', 0.0)),
        )


def _status_of(check: Any) -> Optional[str]:
    if isinstance(check, dict):
        return check.get('status')
    return check
