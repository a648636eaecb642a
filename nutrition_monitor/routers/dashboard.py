"""Presentation endpoints for the monitoring dashboard page.

These answer with simplified figures shaped for the UI widgets. Some of them
are not measured anywhere and are filled with random placeholder values; those
responses carry ``synthetic: true`` and list the made-up keys in
``synthetic_fields``. Authoritative figures live in the monitoring router.
"""

import random
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from nutrition_monitor.lib.dependencies import get_performance_monitor
from nutrition_monitor.lib.time_utils import utc_now_iso
from nutrition_monitor.routers.monitoring import error_response
from nutrition_monitor.services.performance_monitor import PerformanceMonitor

router = APIRouter()

ERROR_CATEGORIES = ('api', 'processing', 'network')


def _synthetic(payload: Dict[str, Any], fields: List[str]) -> Dict[str, Any]:
  return {**payload, 'synthetic': bool(fields), 'synthetic_fields': fields}


@router.get('/system-status')
async def system_status(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    summary = monitor.get_system_metrics_summary() or {}
    current = summary.get('current') or {}
    cpu = (current.get('cpu') or {}).get('percent', 0.0)
    memory = (current.get('memory') or {}).get('usage_ratio', 0.0) * 100

    status = 'healthy'
    if cpu > 90:
      status = 'critical'
    elif cpu > 80:
      status = 'warning'

    return _synthetic({
      'status': status,
      'uptime': f'{int(monitor.uptime // 60)}m',
      'cpu': round(cpu),
      'memory': round(memory),
      'active_processes': current.get('active_requests', 0),
    }, [])
  except Exception as e:
    return error_response('Failed to get system status', e)


@router.get('/collection-performance')
async def collection_performance(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    queries = list(monitor.queries.values())
    avg_duration = sum(q.avg_duration for q in queries) / len(queries) if queries else 0
    success_rate = sum(q.success_rate * 100 for q in queries) / len(queries) if queries else 100

    return _synthetic({
      'today_collected': monitor.total_queries,
      'avg_processing_time': round(avg_duration),
      'success_rate': round(success_rate),
      'queue_size': random.randint(0, 49),
      'last_collection': utc_now_iso(),
    }, ['queue_size'])
  except Exception as e:
    return error_response('Failed to get collection performance', e)


@router.get('/api-status')
async def api_status(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    apis = [
      {
        'name': 'Supabase API',
        'status': 'healthy',
        'response_time': round(random.uniform(50, 250)),
        'request_count': monitor.total_queries,
      },
      {
        'name': 'Internal API',
        'status': 'healthy',
        'response_time': round(random.uniform(20, 120)),
        'request_count': random.randint(500, 1499),
      },
    ]
    return _synthetic({'apis': apis}, ['apis[].status', 'apis[].response_time', 'apis[1].request_count'])
  except Exception as e:
    return error_response('Failed to get API status', e)


@router.get('/quality-metrics')
async def quality_metrics(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    success_rate = (1 - monitor.calculate_error_rate()) * 100 if monitor.total_queries else 95
    return _synthetic({
      'quality_score': round(success_rate),
      'deduplication_rate': random.randint(90, 100),
      'validation_rate': round(success_rate),
      'category_accuracy': random.randint(85, 100),
      'tag_match_rate': random.randint(80, 100),
    }, ['deduplication_rate', 'category_accuracy', 'tag_match_rate'])
  except Exception as e:
    return error_response('Failed to get quality metrics', e)


@router.get('/recent-activity')
async def recent_activity(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    activities = []
    now = utc_now_iso()
    for query in monitor.get_top_queries(limit=5):
      activities.append({
        'timestamp': now,
        'message': f"{query['name']} executed ({query['total_calls']} calls)",
        'type': 'warning' if query['error_count'] > 0 else 'success',
      })
    for error in monitor.get_recent_errors(limit=3):
      activities.append({
        'timestamp': error['timestamp'],
        'message': f"Error: {error['message']}",
        'type': 'error',
      })
    return _synthetic({'activities': activities[:10]}, [])
  except Exception as e:
    return error_response('Failed to get recent activity', e)


@router.get('/error-stats')
async def error_stats(monitor: PerformanceMonitor = Depends(get_performance_monitor)):
  try:
    errors = monitor.get_recent_errors(limit=len(monitor.errors))
    counts = {category: sum(1 for e in errors if e['type'] == category) for category in ERROR_CATEGORIES}
    return _synthetic({
      'total_errors': len(errors),
      'api_errors': counts['api'],
      'processing_errors': counts['processing'],
      'network_errors': counts['network'],
      'last_error': errors[0]['timestamp'] if errors else None,
      'error_rate': monitor.calculate_error_rate(),
    }, [])
  except Exception as e:
    return error_response('Failed to get error stats', e)
