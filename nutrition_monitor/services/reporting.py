"""Trend classification, top issues and rule-based recommendations.

Pure functions over dashboard data and persisted history, shared by the
realtime service and the summarize-metrics script.
"""

from typing import Any, Dict, List, Optional, Sequence

TREND_CHANGE_THRESHOLD = 0.2
HIGH_ERROR_RATE = 0.05
SLOW_QUERY_MS = 1000
RECOMMEND_QUERY_TIME_MS = 500
RECOMMEND_ERROR_RATE = 0.02
RECOMMEND_MEMORY_RATIO = 0.8


def get_nested_value(record: Dict[str, Any], path: str) -> Any:
    """Follow a dotted path ('performance.error_rate'); None if any step is missing."""
    current: Any = record
    for key in path.split('.'):
        if not isinstance(current, dict) or current.get(key) is None:
            return None
        current = current[key]
    return current


def calculate_metric_trend(records: Sequence[Dict[str, Any]], metric_path: str) -> str:
    """First-vs-last change of one metric across the records.

    Returns 'increasing' or 'decreasing' past a 20% change, 'stable' otherwise,
    and 'insufficient_data' when fewer than two values are present.
    """
    values = [value for value in (get_nested_value(r, metric_path) for r in records) if value is not None]
    if len(values) < 2:
        return 'insufficient_data'

    first, last = values[0], values[-1]
    if first == 0:
        return 'increasing' if last > 0 else 'stable'

    change = (last - first) / first
    if change > TREND_CHANGE_THRESHOLD:
        return 'increasing'
    if change < -TREND_CHANGE_THRESHOLD:
        return 'decreasing'
    return 'stable'


def calculate_trends(historical_metrics: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    if len(historical_metrics) < 2:
        return {'message': 'Insufficient data for trend analysis', 'data_points': len(historical_metrics)}

    return {
        'response_time': calculate_metric_trend(historical_metrics, 'performance.avg_query_time'),
        'error_rate': calculate_metric_trend(historical_metrics, 'performance.error_rate'),
        'data_points': len(historical_metrics),
    }


def identify_top_issues(dashboard_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Unhealthy checks, a high error rate, and queries averaging over a second."""
    issues = []
    health = dashboard_data.get('health') or {}
    performance = dashboard_data.get('performance') or {}
    overall = health.get('overall', 'unknown')

    if overall != 'healthy':
        issues.append({
            'type': 'health',
            'severity': 'critical' if overall == 'error' else 'warning',
            'message': 'System health issues detected',
            'details': health,
        })

    error_rate = performance.get('error_rate', 0) or 0
    if error_rate > HIGH_ERROR_RATE:
        issues.append({
            'type': 'error_rate',
            'severity': 'warning',
            'message': f'High error rate: {error_rate * 100:.2f}%',
            'details': {'error_rate': error_rate},
        })

    slow_queries = [q for q in dashboard_data.get('top_queries', []) if q.get('avg_duration', 0) > SLOW_QUERY_MS]
    if slow_queries:
        issues.append({
            'type': 'slow_queries',
            'severity': 'warning',
            'message': f'{len(slow_queries)} slow queries detected',
            'details': {'slow_queries': slow_queries[:3]},
        })

    return issues


def _memory_ratio(dashboard_data: Dict[str, Any]) -> Optional[float]:
    return get_nested_value(dashboard_data, 'system_metrics.current.memory.usage_ratio')


def generate_recommendations(dashboard_data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Static rules over the current dashboard figures."""
    recommendations = []
    performance = dashboard_data.get('performance') or {}

    if (performance.get('avg_query_time') or 0) > RECOMMEND_QUERY_TIME_MS:
        recommendations.append({
            'category': 'performance',
            'priority': 'medium',
            'title': 'Optimize query performance',
            'description': 'Average query time is above 500ms. Consider adding indexes or optimizing queries.',
            'action': 'Review slow queries and add appropriate database indexes',
        })

    if (performance.get('error_rate') or 0) > RECOMMEND_ERROR_RATE:
        recommendations.append({
            'category': 'reliability',
            'priority': 'high',
            'title': 'Reduce error rate',
            'description': 'Error rate is above 2%. Investigate and fix recurring errors.',
            'action': 'Review error logs and implement proper error handling',
        })

    memory_ratio = _memory_ratio(dashboard_data)
    if memory_ratio is not None and memory_ratio > RECOMMEND_MEMORY_RATIO:
        recommendations.append({
            'category': 'resources',
            'priority': 'high',
            'title': 'High memory usage',
            'description': 'Memory usage is above 80%. Consider optimizing memory usage or scaling up.',
            'action': 'Monitor memory leaks and optimize data structures',
        })

    return recommendations
