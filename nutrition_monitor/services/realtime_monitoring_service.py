"""Realtime monitoring: periodic health checks, snapshot collection and fan-out.

Health checks probe the Supabase database, the Supabase service surface
(database, storage, auth) and this process. Every check and every collection
tick is pushed to in-process subscribers and, while memory allows, to the
connected WebSocket clients. A reduced projection of each collection tick is
appended to the daily metrics history.
"""

import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi.websockets import WebSocket, WebSocketState
from supabase import Client

from nutrition_monitor.lib import metrics
from nutrition_monitor.lib.memory_policy import (
    RECENT_RESTART_SECONDS,
    health_check_interval,
    memory_status,
    websocket_fanout_allowed,
)
from nutrition_monitor.lib.scheduler import RepeatingTask
from nutrition_monitor.lib.structured_logger import StructuredLogger
from nutrition_monitor.lib.supabase_client import get_supabase_client
from nutrition_monitor.lib.time_utils import utc_now_iso
from nutrition_monitor.models.health_status import ERROR, HEALTHY, SLOW, WARNING, CheckResult, HealthStatus
from nutrition_monitor.models.snapshot import PersistedMetricsSnapshot
from nutrition_monitor.services import reporting
from nutrition_monitor.services.metrics_history import MetricsHistory
from nutrition_monitor.services.performance_monitor import PerformanceMonitor

logger = StructuredLogger(__name__)

Subscriber = Callable[[str, Dict[str, Any]], Any]

PROBE_TABLE = 'nutrition_posts'
CONNECTION_PROBE_TABLE = '_dummy_table_for_connection_test_'
MISSING_TABLE_MARKERS = ('does not exist', 'Could not find the table')

SLOW_RESPONSE_MS = 2000
WARNING_RESPONSE_MS = 1000
REALTIME_COLLECTION_INTERVAL = 10.0
HISTORY_REPORT_DAYS = 7


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _error_message(error: BaseException) -> str:
    # postgrest APIError keeps the server message on .message
    return str(getattr(error, 'message', None) or error)


def _is_missing_table(message: str) -> bool:
    return any(marker in message for marker in MISSING_TABLE_MARKERS)


def is_websocket_open(ws: WebSocket) -> bool:
    return ws.client_state == WebSocketState.CONNECTED and ws.application_state == WebSocketState.CONNECTED


class RealtimeMonitoringService:
    """Health checks and live snapshots built on top of a PerformanceMonitor."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        history: MetricsHistory,
        client_factory: Callable[[], Client] = get_supabase_client,
    ):
        """Initialize the service without starting its timers.

        Args:
            monitor: Source of the performance report, probes and log writer
            history: Daily JSONL store for reduced snapshots
            client_factory: Returns the Supabase client used by the probes
        """
        self.monitor = monitor
        self.history = history
        self.client_factory = client_factory

        self.health_status = HealthStatus()
        self.subscribers: Set[Subscriber] = set()
        self.websocket_clients: Set[WebSocket] = set()

        self._client: Optional[Client] = None
        self._tasks = [
            RepeatingTask('health-check', self.perform_health_check, self.next_health_check_interval, run_immediately=True),
            RepeatingTask('realtime-collection', self.collect_realtime_metrics, REALTIME_COLLECTION_INTERVAL),
        ]

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start(self) -> None:
        """Run a health check now, then on the adaptive cadence; collect every 10s."""
        for task in self._tasks:
            task.start()
        logger.log_event('realtime.started')

    async def shutdown(self) -> None:
        """Stop both timers, close open WebSocket clients and drop all listeners."""
        for task in self._tasks:
            await task.stop()

        for ws in list(self.websocket_clients):
            if not is_websocket_open(ws):
                continue
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f'WebSocket close failed during shutdown: {e}')

        self.subscribers.clear()
        self.websocket_clients.clear()
        self._update_subscriber_gauge()
        logger.log_event('realtime.shutdown')

    def next_health_check_interval(self) -> float:
        return health_check_interval(self.monitor.memory_probe().usage_ratio)

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = self.client_factory()
        return self._client

    # ========================================================================
    # HEALTH CHECKS
    # ========================================================================

    async def perform_health_check(self) -> HealthStatus:
        """Run all three probes, store the result and push a health_update."""
        database = await self.check_database_health()
        supabase = await self.check_supabase_health()
        system = await self.check_system_health()

        self.health_status = HealthStatus.from_checks(database, supabase, system, utc_now_iso())
        for component, check in (('database', database), ('supabase', supabase), ('system', system)):
            metrics.update_health_status(component, check.status)
        metrics.update_health_status('overall', self.health_status.overall)

        await self.notify_subscribers('health_update', self.health_status.to_dict())
        self.log_health_status(self.health_status)
        return self.health_status

    @staticmethod
    def _probe_table(client: Client, table: str):
        return client.table(table).select('count').limit(1).execute()

    async def check_database_health(self) -> CheckResult:
        """One lightweight read; slow above 2s, warning above 1s."""
        try:
            client = self._get_client()
        except Exception as e:
            return CheckResult(ERROR, _error_message(e))

        start = time.perf_counter()
        try:
            await asyncio.to_thread(self._probe_table, client, PROBE_TABLE)
        except Exception as e:
            message = _error_message(e)
            if _is_missing_table(message):
                fallback = await self._check_connection_without_table(client, start)
                if fallback is not None:
                    return fallback
            return CheckResult(ERROR, message, _elapsed_ms(start))

        response_time = _elapsed_ms(start)
        status = HEALTHY
        if response_time > SLOW_RESPONSE_MS:
            status = SLOW
        elif response_time > WARNING_RESPONSE_MS:
            status = WARNING
        return CheckResult(status, f'Database responding in {response_time:.0f}ms', response_time)

    async def _check_connection_without_table(self, client: Client, start: float) -> Optional[CheckResult]:
        """Any error other than a missing table means the connection itself works."""
        try:
            await asyncio.to_thread(self._probe_table, client, CONNECTION_PROBE_TABLE)
        except Exception as e:
            if not _is_missing_table(_error_message(e)):
                return CheckResult(
                    HEALTHY,
                    'Database connection working (tables not created yet)',
                    _elapsed_ms(start),
                )
        return None

    async def check_supabase_health(self) -> CheckResult:
        """Probe database, storage and auth concurrently; healthy only if all pass."""
        try:
            client = self._get_client()
        except Exception as e:
            return CheckResult(ERROR, _error_message(e))

        start = time.perf_counter()
        outcomes = await asyncio.gather(
            asyncio.to_thread(self._probe_table, client, PROBE_TABLE),
            self.check_storage_health(client),
            self.check_auth_health(client),
            return_exceptions=True,
        )
        response_time = _elapsed_ms(start)

        services = [
            {
                'service': service,
                'status': ERROR if isinstance(outcome, BaseException) else HEALTHY,
                'error': _error_message(outcome) if isinstance(outcome, BaseException) else None,
            }
            for service, outcome in zip(('database', 'storage', 'auth'), outcomes)
        ]
        healthy_services = sum(1 for service in services if service['status'] == HEALTHY)

        status = HEALTHY
        if healthy_services == 0:
            status = ERROR
        elif healthy_services < len(services):
            status = WARNING

        return CheckResult(
            status,
            f'{healthy_services}/{len(services)} services healthy',
            response_time,
            details={'services': services},
        )

    async def check_storage_health(self, client: Client) -> Dict[str, Any]:
        try:
            buckets = await asyncio.to_thread(client.storage.list_buckets)
        except Exception as e:
            raise RuntimeError(f'Storage check failed: {_error_message(e)}') from e
        return {'status': HEALTHY, 'buckets': len(buckets or [])}

    async def check_auth_health(self, client: Client) -> Dict[str, Any]:
        """The service-role client reaching this point means auth is usable."""
        try:
            auth = client.auth
        except Exception as e:
            raise RuntimeError(f'Auth check failed: {_error_message(e)}') from e
        if auth is None:
            raise RuntimeError('Auth check failed: client has no auth interface')
        return {'status': HEALTHY}

    async def check_system_health(self) -> CheckResult:
        """Memory pressure (error >95%, warning >85%) and recent-restart detection."""
        try:
            memory = self.monitor.memory_probe()
            uptime = self.monitor.uptime_probe()
        except Exception as e:
            return CheckResult(ERROR, _error_message(e))

        status = memory_status(memory.usage_ratio)
        warnings: List[str] = []
        if status == ERROR:
            warnings.append('Critical memory usage (>95%)')
        elif status == WARNING:
            warnings.append('High memory usage (>85%)')

        if uptime < RECENT_RESTART_SECONDS:
            warnings.append('Recent restart detected')
            if status == HEALTHY:
                status = WARNING

        return CheckResult(
            status,
            ', '.join(warnings) if warnings else 'System healthy',
            details={'uptime': uptime, 'memory': memory.to_dict(), 'warnings': warnings},
        )

    def log_health_status(self, health_status: HealthStatus) -> None:
        self.monitor.log_writer.write('health_checks', {
            'timestamp': health_status.timestamp,
            'type': 'health_check',
            'status': health_status.overall,
            'details': {
                'database': health_status.database.status,
                'supabase': health_status.supabase.status,
                'system': health_status.system.status,
            },
        })

    # ========================================================================
    # COLLECTION
    # ========================================================================

    async def collect_realtime_metrics(self) -> Optional[Dict[str, Any]]:
        """Build a live snapshot, push metrics_update and persist the reduced form.

        Failures are recorded as 'realtime_metrics' errors; the tick is skipped.
        """
        try:
            report = self.monitor.generate_report()
            snapshot = {
                'timestamp': utc_now_iso(),
                'performance': report,
                'health': self.health_status.to_dict(),
                'active_connections': self.get_active_connections(),
                'recent_activity': self.get_recent_activity(report),
            }
            await self.notify_subscribers('metrics_update', snapshot)
            self.history.store_metrics(PersistedMetricsSnapshot.from_realtime_metrics(snapshot))
            return snapshot
        except Exception as e:
            logger.error(f'Failed to collect realtime metrics: {e}', exc_info=True)
            self.monitor.record_error('realtime_metrics', e)
            return None

    def get_active_connections(self) -> Dict[str, int]:
        return {
            'database': 1 if self._client is not None else 0,
            'subscribers': len(self.subscribers),
            'websocket': len(self.websocket_clients),
            'http': self.monitor.active_requests,
        }

    def get_recent_activity(self, report: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        report = report or self.monitor.generate_report()
        return {
            'recent_queries': report['queries'][:5],
            'recent_errors': report['errors'][:3],
            'user_activity': report['user_activity'],
        }

    # ========================================================================
    # FAN-OUT
    # ========================================================================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a listener and replay the current health status to it.

        Returns:
            Function that removes the listener
        """
        self.subscribers.add(callback)
        self._update_subscriber_gauge()
        callback('health_update', self.health_status.to_dict())

        def unsubscribe() -> None:
            self.subscribers.discard(callback)
            self._update_subscriber_gauge()

        return unsubscribe

    async def notify_subscribers(self, event: str, data: Dict[str, Any]) -> None:
        """Call every listener, then fan out to WebSocket clients unless memory is tight."""
        for callback in list(self.subscribers):
            try:
                callback(event, data)
            except Exception as e:
                logger.warning(f'Subscriber notification failed: {e}', event=event)

        if websocket_fanout_allowed(self.monitor.memory_probe().usage_ratio):
            await self.notify_websocket_clients(event, data)

    async def notify_websocket_clients(self, event: str, data: Dict[str, Any]) -> None:
        if not self.websocket_clients:
            return

        self.cleanup_websocket_clients()
        message = json.dumps({'event': event, 'data': data}, default=str)
        for ws in list(self.websocket_clients):
            try:
                await ws.send_text(message)
            except Exception as e:
                logger.warning(f'WebSocket notification failed: {e}', event=event)
                self.remove_websocket_client(ws)

    def add_websocket_client(self, ws: WebSocket) -> None:
        self.websocket_clients.add(ws)
        self._update_subscriber_gauge()
        logger.info('WebSocket client added', websocket_clients=len(self.websocket_clients))

    def remove_websocket_client(self, ws: WebSocket) -> None:
        self.websocket_clients.discard(ws)
        self._update_subscriber_gauge()

    def cleanup_websocket_clients(self) -> int:
        """Drop clients that are no longer open.

        Returns:
            Number of clients removed
        """
        closed = [ws for ws in self.websocket_clients if not is_websocket_open(ws)]
        for ws in closed:
            self.websocket_clients.discard(ws)
        if closed:
            self._update_subscriber_gauge()
            logger.info('Removed inactive WebSocket clients', removed_count=len(closed))
        return len(closed)

    def _update_subscriber_gauge(self) -> None:
        metrics.update_subscriber_counts(len(self.subscribers), len(self.websocket_clients))

    # ========================================================================
    # DASHBOARD AND REPORTS
    # ========================================================================

    def get_dashboard_data(self) -> Dict[str, Any]:
        report = self.monitor.generate_report()
        return {
            'timestamp': utc_now_iso(),
            'health': self.health_status.to_dict(),
            'performance': {
                'total_queries': report['summary']['total_queries'],
                'avg_query_time': report['summary']['avg_query_time'],
                'error_rate': report['summary']['error_rate'],
                'uptime': report['uptime'],
            },
            'top_queries': report['queries'][:10],
            'recent_errors': report['errors'][:10],
            'user_activity': report['user_activity'],
            'system_metrics': report['system_metrics'],
        }

    def get_historical_metrics(self, days: int = 7) -> List[Dict[str, Any]]:
        return self.history.get_historical_metrics(days)

    def generate_monitoring_report(self) -> Dict[str, Any]:
        """Current figures, 7-day trends, top issues and recommendations."""
        dashboard_data = self.get_dashboard_data()
        historical_metrics = self.get_historical_metrics(HISTORY_REPORT_DAYS)
        performance = dashboard_data['performance']

        return {
            'generated_at': utc_now_iso(),
            'summary': {
                'current_health': dashboard_data['health']['overall'],
                'uptime': performance['uptime'],
                'total_queries': performance['total_queries'],
                'error_rate': performance['error_rate'],
                'avg_response_time': performance['avg_query_time'],
            },
            'trends': reporting.calculate_trends(historical_metrics),
            'top_issues': reporting.identify_top_issues(dashboard_data),
            'recommendations': reporting.generate_recommendations(dashboard_data),
        }
