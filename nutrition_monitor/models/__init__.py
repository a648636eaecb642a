"""In-memory monitoring state and the persisted snapshot projection."""

from nutrition_monitor.models.error_record import ErrorRecord, Severity, classify_severity
from nutrition_monitor.models.health_status import CheckResult, HealthStatus, calculate_overall_health
from nutrition_monitor.models.query_metric import QueryCall, QueryMetric
from nutrition_monitor.models.snapshot import PersistedMetricsSnapshot
from nutrition_monitor.models.system_metric import SystemMetricSample
from nutrition_monitor.models.user_activity import ActivityEvent, UserActivityMetric

__all__ = [
    'ActivityEvent',
    'CheckResult',
    'ErrorRecord',
    'HealthStatus',
    'PersistedMetricsSnapshot',
    'QueryCall',
    'QueryMetric',
    'Severity',
    'SystemMetricSample',
    'UserActivityMetric',
    'calculate_overall_health',
    'classify_severity',
]
