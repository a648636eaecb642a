"""Prometheus-compatible instruments mirroring the in-memory monitoring state.

The in-memory MetricStore stays the source of truth for the JSON API; these
instruments expose the same signals in text exposition format at /metrics.
"""

from prometheus_client import Counter, Gauge, Histogram


HEALTH_STATUS_VALUES = {
    'unknown': -1,
    'healthy': 0,
    'warning': 1,
    'slow': 1,
    'error': 2,
}

# Monitored operations (Supabase queries, HTTP requests)
query_duration_seconds = Histogram(
    'monitored_query_duration_seconds',
    'Duration of monitored operations in seconds',
    ['query_name', 'status'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0]
)

recorded_errors_total = Counter(
    'monitoring_recorded_errors_total',
    'Errors recorded by the performance monitor',
    ['error_type', 'severity']
)

alerts_total = Counter(
    'monitoring_alerts_total',
    'Alerts raised by the performance monitor',
    ['alert_type']
)

user_actions_total = Counter(
    'monitoring_user_actions_total',
    'User actions tracked by the performance monitor'
)

# Health and fan-out
health_status_gauge = Gauge(
    'monitoring_health_status',
    'Latest health check status per component (0 healthy, 1 warning, 2 error, -1 unknown)',
    ['component']
)

subscribers_gauge = Gauge(
    'monitoring_subscribers',
    'Registered realtime subscribers',
    ['kind']
)

memory_usage_ratio_gauge = Gauge(
    'monitoring_memory_usage_ratio',
    'Fraction of host memory in use at the last system sample'
)


def record_query_duration(query_name: str, success: bool, duration_ms: float):
    """Record a monitored operation.

    Args:
        query_name: Operation name ('load_nutrition_posts', 'GET_/api/shop', ...)
        success: Whether the operation succeeded
        duration_ms: Wall-clock duration in milliseconds
    """
    query_duration_seconds.labels(
        query_name=query_name,
        status='success' if success else 'error'
    ).observe(duration_ms / 1000)


def record_error(error_type: str, severity: str):
    recorded_errors_total.labels(error_type=error_type, severity=severity).inc()


def record_alert(alert_type: str):
    alerts_total.labels(alert_type=alert_type).inc()


def record_user_action():
    user_actions_total.inc()


def update_health_status(component: str, status: str):
    """Set the health gauge for one component ('database', 'supabase', 'system', 'overall')."""
    health_status_gauge.labels(component=component).set(HEALTH_STATUS_VALUES.get(status, -1))


def update_subscriber_counts(callbacks: int, websockets: int):
    subscribers_gauge.labels(kind='callback').set(callbacks)
    subscribers_gauge.labels(kind='websocket').set(websockets)


def update_memory_usage(ratio: float):
    memory_usage_ratio_gauge.set(ratio)
