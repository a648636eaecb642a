"""Monitoring API endpoints.

Read adapters over the PerformanceMonitor and RealtimeMonitoringService held on
app.state, a Server-Sent-Events stream of realtime updates, and a few
operator utilities. Every handler catches its own failure and answers 500 with
``{"error", "message"}`` so one broken figure never takes the dashboard down.
"""

import asyncio
import json
import os
import platform
import sys
import time
from typing import Any, AsyncIterator, Dict, Optional

import psutil
from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from nutrition_monitor.lib.dependencies import get_performance_monitor, get_realtime_service
from nutrition_monitor.lib.structured_logger import StructuredLogger
from nutrition_monitor.lib.time_utils import utc_now_iso
from nutrition_monitor.services import reporting
from nutrition_monitor.services.performance_monitor import PerformanceMonitor
from nutrition_monitor.services.realtime_monitoring_service import RealtimeMonitoringService

logger = StructuredLogger(__name__)

router = APIRouter()

SSE_KEEPALIVE_SECONDS = 15.0
GIGABYTE = 1024 ** 3

TEST_QUERIES = ('test_query_1', 'test_query_2', 'test_slow_query')


class AlertTestRequest(BaseModel):
  """Body for POST /test-alert."""

  message: Optional[str] = Field(None, max_length=500, description='Free-text alert message')


def error_response(what: str, error: Exception) -> JSONResponse:
  logger.error(f'{what}: {error}', exc_info=True)
  return JSONResponse(status_code=500, content={'error': what, 'message': str(error)})


# ============================================================================
# HEALTH AND AGGREGATES
# ============================================================================


@router.get('/health')
async def health(realtime: RealtimeMonitoringService = Depends(get_realtime_service)):
  """Run a fresh health check: 200 when healthy, 503 otherwise."""
  try:
    health_status = await realtime.perform_health_check()
  except Exception as e:
    logger.error(f'Health check failed: {e}', exc_info=True)
    return JSONResponse(
      status_code=500,
      content={'status': 'error', 'message': str(e), 'timestamp': utc_now_iso()},
    )

  return JSONResponse(
    status_code=200 if health_status.is_healthy else 503,
    content=jsonable_encoder({
      'status': health_status.overall,
      'timestamp': health_status.timestamp,
      'checks': {
        'database': health_status.database.to_dict(),
        'supabase': health_status.supabase.to_dict(),
        'system': health_status.system.to_dict(),
      },
    }),
  )


@router.get('/dashboard')
async def dashboard(realtime: RealtimeMonitoringService = Depends(get_realtime_service)):
  try:
    return realtime.get_dashboard_data()
  except Exception as e:
    return error_response('Failed to get dashboard data', e)


@router.get('/metrics')
async def performance_report(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    return monitor.generate_report()
  except Exception as e:
    return error_response('Failed to get metrics', e)


@router.get('/metrics/historical')
async def historical_metrics(
  days: int = Query(7, ge=1, le=365, description='Number of days to scan back from today'),
  realtime: RealtimeMonitoringService = Depends(get_realtime_service),
):
  try:
    records = realtime.get_historical_metrics(days)
    return {'days': days, 'data_points': len(records), 'metrics': records}
  except Exception as e:
    return error_response('Failed to get historical metrics', e)


@router.get('/report')
async def monitoring_report(realtime: RealtimeMonitoringService = Depends(get_realtime_service)):
  try:
    return realtime.generate_monitoring_report()
  except Exception as e:
    return error_response('Failed to generate report', e)


@router.get('/queries')
async def query_metrics(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  """Per-query aggregates, busiest first; success_rate is a percentage."""
  try:
    queries = [
      {
        'name': query['name'],
        'total_calls': query['total_calls'],
        'avg_duration': query['avg_duration'],
        'max_duration': query['max_duration'],
        'success_rate': round(query['success_count'] / query['total_calls'] * 100, 2) if query['total_calls'] else 0,
        'error_count': query['error_count'],
      }
      for query in monitor.get_top_queries(limit=len(monitor.queries))
    ]
    return {'total_queries': len(queries), 'queries': queries}
  except Exception as e:
    return error_response('Failed to get query metrics', e)


@router.get('/errors')
async def error_logs(
  limit: int = Query(50, ge=1, le=1000),
  monitor: PerformanceMonitor = Depends(get_performance_monitor),
):
  try:
    return {
      'total_errors': len(monitor.errors),
      'error_rate': monitor.calculate_error_rate(),
      'errors': monitor.get_recent_errors(limit),
    }
  except Exception as e:
    return error_response('Failed to get error logs', e)


@router.get('/activity')
async def user_activity(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    return monitor.get_user_activity_summary()
  except Exception as e:
    return error_response('Failed to get user activity', e)


@router.get('/system')
async def system_metrics(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    summary = monitor.get_system_metrics_summary()
    if summary is None:
      return {'message': 'No system metrics available yet'}
    return {'current': summary['current'], 'trends': summary['trends'], 'uptime': monitor.uptime}
  except Exception as e:
    return error_response('Failed to get system metrics', e)


@router.get('/alerts')
async def alerts(realtime: RealtimeMonitoringService = Depends(get_realtime_service)):
  """Issues derived from current figures plus the recent alert history."""
  try:
    issues = reporting.identify_top_issues(realtime.get_dashboard_data())
    return {
      'active_alerts': len(issues),
      'alerts': issues,
      'recent_alerts': list(reversed(realtime.monitor.recent_alerts)),
    }
  except Exception as e:
    return error_response('Failed to get alerts', e)


@router.get('/config')
async def monitoring_config(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    config = monitor.config
    return {
      'monitoring': {
        'enabled': True,
        'metrics_retention': config.logging.retention,
        'alert_thresholds': config.alerts.model_dump(),
      },
      'features': {
        'realtime': True,
        'historical_data': True,
        'alerting': True,
        'dashboard': True,
      },
    }
  except Exception as e:
    return error_response('Failed to get configuration', e)


@router.get('/system-info')
async def system_info():
  """Interpreter and host facts."""
  try:
    memory = psutil.virtual_memory()
    host_uptime = max(0.0, time.time() - psutil.boot_time())
    return {
      'python_version': sys.version.split()[0],
      'platform': sys.platform,
      'arch': platform.machine(),
      'pid': os.getpid(),
      'total_memory': f'{round(memory.total / GIGABYTE)}GB',
      'free_memory': f'{round(memory.available / GIGABYTE)}GB',
      'uptime': f'{round(host_uptime / 3600)}h',
    }
  except Exception as e:
    return error_response('Failed to get system info', e)


# ============================================================================
# SERVER-SENT EVENTS
# ============================================================================


def _sse_frame(payload: Dict[str, Any]) -> str:
  return f'data: {json.dumps(jsonable_encoder(payload))}\n\n'


async def realtime_event_stream(
  realtime: RealtimeMonitoringService,
  request: Optional[Request] = None,
  keepalive: float = SSE_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
  """Yield SSE frames: a 'connected' frame, then every subscriber event.

  The subscription is dropped when the client disconnects or the generator
  is closed.
  """
  yield _sse_frame({'type': 'connected', 'timestamp': utc_now_iso()})

  queue: asyncio.Queue = asyncio.Queue()
  unsubscribe = realtime.subscribe(lambda event, data: queue.put_nowait((event, data)))
  try:
    while True:
      if request is not None and await request.is_disconnected():
        break
      try:
        event, data = await asyncio.wait_for(queue.get(), timeout=keepalive)
      except asyncio.TimeoutError:
        yield ': keep-alive\n\n'
        continue
      yield _sse_frame({'type': event, 'data': data, 'timestamp': utc_now_iso()})
  finally:
    unsubscribe()


@router.get('/realtime')
async def realtime_stream(request: Request, realtime: RealtimeMonitoringService = Depends(get_realtime_service)):
  """Server-Sent-Events stream of health_update and metrics_update events."""
  return StreamingResponse(
    realtime_event_stream(realtime, request),
    media_type='text/event-stream',
    headers={'Cache-Control': 'no-cache', 'Connection': 'keep-alive'},
  )


# ============================================================================
# OPERATOR UTILITIES
# ============================================================================


@router.post('/test/generate-metrics')
async def generate_test_metrics(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  """Record a handful of deterministic test calls and one test user action."""
  try:
    timestamp = utc_now_iso()
    for index, query_name in enumerate(TEST_QUERIES):
      duration = 1500.0 if 'slow' in query_name else 100.0 * (index + 1)
      monitor.record_query_metrics(query_name, duration, True, {'test': True, 'timestamp': timestamp})
    monitor.track_user_activity('test_user_1', 'test_action', {'test': True, 'session_id': 'test_session'})
    return {'message': 'Test metrics generated successfully', 'timestamp': utc_now_iso()}
  except Exception as e:
    return error_response('Failed to generate test metrics', e)


@router.post('/trigger-collection')
async def trigger_collection(
  monitor: PerformanceMonitor = Depends(get_performance_monitor),
  realtime: RealtimeMonitoringService = Depends(get_realtime_service),
):
  """Run one realtime collection now and record it as 'manual_collection'."""
  try:
    snapshot = await monitor.monitor_query('manual_collection', realtime.collect_realtime_metrics, {'type': 'manual'})
    return {
      'message': 'Collection triggered successfully',
      'collected': snapshot is not None,
      'timestamp': utc_now_iso(),
    }
  except Exception as e:
    return error_response('Failed to trigger collection', e)


@router.post('/reset-circuit-breakers')
async def reset_circuit_breakers():
  """No circuit breakers exist; answers success for dashboard compatibility."""
  try:
    return {
      'message': 'Circuit breakers reset successfully',
      'synthetic': True,
      'timestamp': utc_now_iso(),
    }
  except Exception as e:
    return error_response('Failed to reset circuit breakers', e)


@router.post('/clear-alerts')
async def clear_alerts(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    cleared = monitor.clear_alerts()
    return {'message': 'Alerts cleared successfully', 'cleared': cleared, 'timestamp': utc_now_iso()}
  except Exception as e:
    return error_response('Failed to clear alerts', e)


@router.post('/test-alert')
async def test_alert(
  body: Optional[AlertTestRequest] = None,
  monitor: PerformanceMonitor = Depends(get_performance_monitor),
):
  try:
    message = body.message if body else None
    monitor.record_query_metrics('test_alert', 100.0, True, {'type': 'test', 'message': message})
    alert = monitor.send_alert('test_alert', {'message': message, 'severity': 'info'})
    return {'message': 'Test alert created successfully', 'alert': alert, 'timestamp': utc_now_iso()}
  except Exception as e:
    return error_response('Failed to create test alert', e)
