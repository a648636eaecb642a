"""Performance monitor for Supabase queries, user activity and the host process.

Holds the in-memory MetricStore (per-query aggregates, per-user activity, a
bounded error history and bounded system samples), writes every event to the
category log files, and raises alerts. Alerts are logged and kept in a short
history; they are never delivered to an outside system.
"""

import inspect
import os
import time
from collections import deque
from datetime import timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar, Union

import psutil

from nutrition_monitor.lib import metrics
from nutrition_monitor.lib.config import MonitoringConfig, MonitoringPaths
from nutrition_monitor.lib.log_writer import CategoryLogWriter
from nutrition_monitor.lib.memory_policy import MemoryUsage, memory_status, process_uptime, read_memory_usage
from nutrition_monitor.lib.scheduler import RepeatingTask
from nutrition_monitor.lib.structured_logger import StructuredLogger
from nutrition_monitor.lib.time_utils import parse_iso, utc_now, utc_now_iso
from nutrition_monitor.models.error_record import ERROR_HISTORY_LIMIT, ErrorRecord, Severity
from nutrition_monitor.models.query_metric import QueryCall, QueryMetric
from nutrition_monitor.models.system_metric import SYSTEM_METRICS_LIMIT, SystemMetricSample
from nutrition_monitor.models.user_activity import ANONYMOUS_USER, ActivityEvent, UserActivityMetric

logger = StructuredLogger(__name__)

T = TypeVar('T')

SYSTEM_METRICS_INTERVAL = 30.0
ALERT_HISTORY_LIMIT = 100
ERROR_RATE_WINDOW = timedelta(minutes=5)
ACTIVE_USER_WINDOW = timedelta(hours=1)
TREND_WINDOW = 10


def _open_handles(process: psutil.Process) -> int:
    if hasattr(process, 'num_fds'):
        return process.num_fds()
    return process.num_handles()


class PerformanceMonitor:
    """Times monitored operations and keeps the in-memory MetricStore.

    Usage:
        monitor = PerformanceMonitor(config)
        posts = await monitor.monitor_query('load_posts', lambda: fetch_posts(client))
        report = monitor.generate_report()

    All mutation happens on the event loop between awaits, so no locking is
    needed. Errors raised by the monitored operation always propagate to the
    caller after being recorded.
    """

    # Memory-threshold alerting on system samples is switched off to keep the
    # alert log quiet; the health check still reports memory pressure.
    memory_alerts_enabled = False

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        log_writer: Optional[CategoryLogWriter] = None,
        memory_probe: Callable[[], MemoryUsage] = read_memory_usage,
        uptime_probe: Callable[[], float] = process_uptime,
    ):
        """Initialize the monitor without starting its timers.

        Args:
            config: Monitoring configuration (defaults when omitted)
            log_writer: Category log writer (defaults to MONITORING_LOGS_DIR)
            memory_probe: Callable returning the current MemoryUsage
            uptime_probe: Callable returning process uptime in seconds
        """
        self.config = config or MonitoringConfig()
        self.log_writer = log_writer or CategoryLogWriter(
            MonitoringPaths.from_env().logs_dir,
            retention_days=self.config.logging.retention_days,
        )
        self.memory_probe = memory_probe
        self.uptime_probe = uptime_probe

        self.queries: Dict[str, QueryMetric] = {}
        self.user_activity: Dict[str, UserActivityMetric] = {}
        self.errors: Deque[ErrorRecord] = deque(maxlen=ERROR_HISTORY_LIMIT)
        self.system_metrics: Deque[SystemMetricSample] = deque(maxlen=SYSTEM_METRICS_LIMIT)
        self.recent_alerts: Deque[Dict[str, Any]] = deque(maxlen=ALERT_HISTORY_LIMIT)
        self.active_requests = 0

        self._started_at = time.monotonic()
        self._process = psutil.Process(os.getpid())
        self._tasks = [
            RepeatingTask('system-metrics', self.collect_system_metrics, SYSTEM_METRICS_INTERVAL),
        ]

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        """Start system sampling every 30s."""
        for task in self._tasks:
            task.start()
        logger.log_event('monitor.started', context={'tasks': [task.name for task in self._tasks]})

    async def shutdown(self) -> None:
        """Stop the sampling timer, waiting for a running tick, then close the log files."""
        for task in self._tasks:
            await task.stop()
        self.log_writer.close()
        logger.log_event('monitor.shutdown')

    @property
    def uptime(self) -> float:
        """Seconds since this monitor was created."""
        return time.monotonic() - self._started_at

    # ========================================================================
    # RECORDING
    # ========================================================================

    async def monitor_query(
        self,
        query_name: str,
        query_function: Callable[[], Union[Awaitable[T], T]],
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """Run an operation, timing it and recording the outcome.

        Args:
            query_name: Name the aggregate is kept under
            query_function: Zero-argument callable, sync or async
            context: Extra fields stored with the call and any error

        Returns:
            Whatever the operation returned

        Raises:
            Exception: Anything the operation raised, after it was recorded
        """
        context = context or {}
        start = time.perf_counter()
        try:
            result = query_function()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            duration = (time.perf_counter() - start) * 1000
            self.record_query_metrics(query_name, duration, False, context, e)
            self.record_error('database_query', e, {'query_name': query_name, 'context': context})
            self._check_slow_query(query_name, duration, context)
            raise

        duration = (time.perf_counter() - start) * 1000
        self.record_query_metrics(query_name, duration, True, context)
        self._check_slow_query(query_name, duration, context)
        return result

    def record_query_metrics(
        self,
        query_name: str,
        duration: float,
        success: bool,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> QueryMetric:
        """Fold one call into the aggregate for ``query_name`` and log it."""
        timestamp = utc_now_iso()
        context = context or {}
        error_message = str(error) if error is not None else None

        metric = self.queries.get(query_name)
        if metric is None:
            metric = self.queries[query_name] = QueryMetric(name=query_name)
        metric.record(QueryCall(
            timestamp=timestamp,
            duration=duration,
            success=success,
            context=context,
            error=error_message,
        ))

        metrics.record_query_duration(query_name, success, duration)
        self.log_writer.write('query_metrics', {
            'timestamp': timestamp,
            'type': 'query_metrics',
            'query_name': query_name,
            'duration': duration,
            'success': success,
            'context': context,
            'error': error_message,
        })
        return metric

    def track_user_activity(
        self,
        user_id: Optional[str],
        action: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> UserActivityMetric:
        """Record one user action; the session comes from ``details['session_id']``."""
        timestamp = utc_now_iso()
        details = details or {}
        user_id = user_id or ANONYMOUS_USER
        session_id = details.get('session_id') or ANONYMOUS_USER

        activity = self.user_activity.get(user_id)
        if activity is None:
            activity = self.user_activity[user_id] = UserActivityMetric(
                user_id=user_id,
                first_seen=timestamp,
                last_seen=timestamp,
            )
        activity.record(ActivityEvent(timestamp=timestamp, action=action, details=details, session_id=session_id))

        metrics.record_user_action()
        self.log_writer.write('user_activity', {
            'timestamp': timestamp,
            'type': 'user_activity',
            'user_id': user_id,
            'action': action,
            'details': details,
        })
        return activity

    def record_error(
        self,
        error_type: str,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorRecord:
        """Store an error, re-check the error rate, and alert when critical."""
        record = ErrorRecord.from_exception(error_type, error, context, utc_now_iso())
        self.errors.append(record)

        metrics.record_error(error_type, record.severity.value)
        self.check_error_rate()
        self.log_writer.write('errors', record.to_dict())

        if record.severity is Severity.CRITICAL:
            self.send_alert('critical_error', record.to_dict())
        return record

    def request_started(self) -> None:
        self.active_requests += 1

    def request_finished(self) -> None:
        self.active_requests = max(0, self.active_requests - 1)

    def collect_system_metrics(self) -> SystemMetricSample:
        """Append one process sample to the bounded system-metrics history."""
        memory = self.memory_probe()
        cpu_times = self._process.cpu_times()
        sample = SystemMetricSample(
            timestamp=utc_now_iso(),
            memory=memory.to_dict(),
            uptime=self.uptime_probe(),
            cpu={
                'user': cpu_times.user,
                'system': cpu_times.system,
                'percent': self._process.cpu_percent(interval=None),
            },
            active_handles=_open_handles(self._process),
            active_requests=self.active_requests,
        )
        self.system_metrics.append(sample)
        metrics.update_memory_usage(memory.usage_ratio)

        if self.memory_alerts_enabled and memory_status(memory.usage_ratio) == 'error':
            self.send_alert('high_memory_usage', {'usage': memory.usage_ratio, 'metrics': sample.to_dict()})
        return sample

    def check_error_rate(self) -> Optional[float]:
        """Errors in the last five minutes over all recorded calls.

        Returns:
            The computed rate, or None when no calls have been recorded
        """
        total_queries = self.total_queries
        if total_queries == 0:
            return None

        since = utc_now() - ERROR_RATE_WINDOW
        recent_errors = sum(1 for record in self.errors if parse_iso(record.timestamp) > since)
        error_rate = recent_errors / total_queries

        high_error_rate = self.config.alerts.high_error_rate
        if high_error_rate.enabled and error_rate > high_error_rate.threshold:
            self.send_alert('high_error_rate', {
                'error_rate': error_rate,
                'recent_errors': recent_errors,
                'total_queries': total_queries,
                'threshold': high_error_rate.threshold,
            })
        return error_rate

    def _check_slow_query(self, query_name: str, duration: float, context: Dict[str, Any]) -> None:
        if duration > self.config.slow_query_threshold_ms:
            self.handle_slow_query(query_name, duration, context)

    def handle_slow_query(self, query_name: str, duration: float, context: Dict[str, Any]) -> Dict[str, Any]:
        record = {
            'timestamp': utc_now_iso(),
            'query_name': query_name,
            'duration': duration,
            'context': context,
            'threshold': self.config.slow_query_threshold_ms,
        }
        logger.warning(f'Slow query detected: {query_name} took {duration:.0f}ms', query_name=query_name, duration_ms=duration)
        self.log_writer.write('slow_queries', record)

        if self.config.alerts.slow_queries.enabled:
            self.send_alert('slow_query', record)
        return record

    def send_alert(self, alert_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Log an alert and keep it in the recent-alert history."""
        alert = {
            'timestamp': utc_now_iso(),
            'type': alert_type,
            'data': data,
            'severity': data.get('severity', 'warning'),
        }
        logger.warning(f'Alert: {alert_type}', alert_type=alert_type, severity=alert['severity'])
        metrics.record_alert(alert_type)
        self.recent_alerts.append(alert)
        self.log_writer.write('alerts', alert)
        return alert

    def clear_alerts(self) -> int:
        cleared = len(self.recent_alerts)
        self.recent_alerts.clear()
        return cleared

    # ========================================================================
    # READING
    # ========================================================================

    @property
    def total_queries(self) -> int:
        return sum(metric.total_calls for metric in self.queries.values())

    def calculate_average_query_time(self) -> float:
        total_calls = self.total_queries
        if total_calls == 0:
            return 0.0
        return sum(metric.total_duration for metric in self.queries.values()) / total_calls

    def calculate_error_rate(self) -> float:
        """Failed calls over all calls, 0 when nothing was recorded."""
        total_calls = self.total_queries
        if total_calls == 0:
            return 0.0
        return sum(metric.error_count for metric in self.queries.values()) / total_calls

    def get_top_queries(self, limit: int = 10, include_recent: bool = False) -> List[Dict[str, Any]]:
        """Query aggregates ordered by call count, busiest first."""
        ranked = sorted(self.queries.values(), key=lambda metric: metric.total_calls, reverse=True)
        return [metric.to_dict(include_recent=include_recent) for metric in ranked[:limit]]

    def get_recent_errors(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent errors, newest first."""
        if limit <= 0:
            return []
        return [record.to_dict() for record in reversed(list(self.errors)[-limit:])]

    def get_user_activity_summary(self) -> Dict[str, Any]:
        since = utc_now() - ACTIVE_USER_WINDOW
        users = list(self.user_activity.values())
        top_users = sorted(users, key=lambda activity: activity.total_actions, reverse=True)[:10]
        return {
            'total_users': len(users),
            'active_users': sum(1 for activity in users if activity.seen_since(since)),
            'top_users': [activity.summary() for activity in top_users],
        }

    def get_system_metrics_summary(self) -> Optional[Dict[str, Any]]:
        """Latest sample plus the RSS trend over the last few samples."""
        recent = list(self.system_metrics)[-TREND_WINDOW:]
        if not recent:
            return None

        latest = recent[-1]
        return {
            'current': latest.to_dict(),
            'trends': {
                'memory_usage': self.calculate_trend([sample.memory['rss'] for sample in recent]),
                'uptime': latest.uptime,
            },
        }

    @staticmethod
    def calculate_trend(values: List[float], threshold: float = 0.1) -> str:
        """Classify first-to-last change as 'increasing', 'decreasing' or 'stable'."""
        if len(values) < 2:
            return 'stable'

        first, last = values[0], values[-1]
        if first == 0:
            return 'increasing' if last > 0 else 'stable'

        change = (last - first) / first
        if change > threshold:
            return 'increasing'
        if change < -threshold:
            return 'decreasing'
        return 'stable'

    def generate_report(self) -> Dict[str, Any]:
        """Read-only snapshot of everything the monitor knows."""
        return {
            'timestamp': utc_now_iso(),
            'uptime': self.uptime,
            'summary': {
                'total_queries': self.total_queries,
                'total_errors': len(self.errors),
                'unique_users': len(self.user_activity),
                'avg_query_time': self.calculate_average_query_time(),
                'error_rate': self.calculate_error_rate(),
            },
            'queries': self.get_top_queries(),
            'errors': self.get_recent_errors(),
            'user_activity': self.get_user_activity_summary(),
            'system_metrics': self.get_system_metrics_summary(),
        }
