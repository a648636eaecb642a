"""
FastAPI middleware feeding HTTP traffic into the performance monitor.

Every request outside the monitoring surface is tracked as a user action
("<METHOD> <path>") and timed as a monitored operation ("<METHOD>_<path>",
success when the status is below 400). Recording failures never affect the
response.
"""

import time

from fastapi import Request

from nutrition_monitor.lib.structured_logger import StructuredLogger
from nutrition_monitor.models.user_activity import ANONYMOUS_USER

logger = StructuredLogger(__name__)

EXCLUDED_PATHS = ('/health', '/api/health', '/metrics', '/monitoring-ws')
EXCLUDED_PREFIXES = ('/api/admin/monitoring',)


def is_excluded(path: str) -> bool:
    return path in EXCLUDED_PATHS or any(path.startswith(prefix) for prefix in EXCLUDED_PREFIXES)


def resolve_user_id(request: Request) -> str:
    """Authenticated user from upstream middleware, then X-User-ID, else anonymous."""
    return getattr(request.state, 'user_id', None) or request.headers.get('X-User-ID') or ANONYMOUS_USER


async def request_monitoring_middleware(request: Request, call_next):
    """
    Track user activity and time each request through the app's PerformanceMonitor.

    Args:
        request: FastAPI request object
        call_next: Next middleware or endpoint in chain

    Returns:
        Response from the endpoint
    """
    monitor = getattr(request.app.state, 'performance_monitor', None)
    path = request.url.path
    if monitor is None or is_excluded(path):
        return await call_next(request)

    method = request.method
    user_id = resolve_user_id(request)

    try:
        monitor.track_user_activity(user_id, f'{method} {path}', {
            'user_agent': request.headers.get('User-Agent'),
            'ip': request.client.host if request.client else None,
            'session_id': request.headers.get('X-Session-ID'),
        })
    except Exception as e:
        logger.error(f'Failed to track user activity for {method} {path}: {e}')

    start_time = time.perf_counter()
    status_code = 500
    monitor.request_started()
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        monitor.request_finished()
        duration_ms = (time.perf_counter() - start_time) * 1000
        try:
            monitor.record_query_metrics(
                f'{method}_{path}',
                duration_ms,
                status_code < 400,
                {'method': method, 'path': path, 'status_code': status_code, 'user_id': user_id},
            )
        except Exception as e:
            logger.error(f'Failed to record request metric for {method} {path}: {e}')
