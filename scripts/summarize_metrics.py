"""Summarize persisted monitoring snapshots.

Scans data/monitoring/metrics-<date>.jsonl files (including size-rotated files
of the same day) and prints the data point count, the health breakdown and the
response-time / error-rate trends over the requested window.

Entry point: main() function (configured in pyproject.toml console_scripts)
"""

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from nutrition_monitor.lib.config import MonitoringPaths
from nutrition_monitor.services import reporting
from nutrition_monitor.services.metrics_history import MetricsHistory

# Configure logging
logging.basicConfig(
  level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def summarize(records: List[Dict[str, Any]]) -> Dict[str, Any]:
  """Build the summary for a list of persisted snapshots (oldest first).

  Args:
      records: Snapshots as returned by MetricsHistory.get_historical_metrics()

  Returns:
      Dictionary with data_points, first/last timestamps, health breakdown,
      averages and trends
  """
  health_breakdown = Counter(
    (reporting.get_nested_value(record, 'health.overall') or 'unknown') for record in records
  )
  query_times = [v for v in (reporting.get_nested_value(r, 'performance.avg_query_time') for r in records) if v is not None]
  error_rates = [v for v in (reporting.get_nested_value(r, 'performance.error_rate') for r in records) if v is not None]

  return {
    'data_points': len(records),
    'first_timestamp': records[0].get('timestamp') if records else None,
    'last_timestamp': records[-1].get('timestamp') if records else None,
    'health_breakdown': dict(health_breakdown),
    'avg_query_time': sum(query_times) / len(query_times) if query_times else 0.0,
    'avg_error_rate': sum(error_rates) / len(error_rates) if error_rates else 0.0,
    'trends': reporting.calculate_trends(records),
  }


def main(argv: Optional[List[str]] = None) -> int:
  """Main entry point.

  Exit codes: 0 on success, 1 when no snapshots were found, 2 on bad input.
  """
  parser = argparse.ArgumentParser(description='Summarize persisted monitoring snapshots')
  parser.add_argument('--days', type=int, default=7, help='Number of days to scan back from today (default: 7)')
  parser.add_argument(
    '--data-dir',
    type=Path,
    default=None,
    help='Metrics directory (default: MONITORING_DATA_DIR or data/monitoring)',
  )
  parser.add_argument('--json', action='store_true', help='Print the summary as JSON')
  args = parser.parse_args(argv)

  if args.days < 1:
    logger.error('--days must be at least 1')
    return 2

  data_dir = args.data_dir or MonitoringPaths.from_env().data_dir
  records = MetricsHistory(data_dir).get_historical_metrics(args.days)
  if not records:
    logger.warning(f'No metrics snapshots found in {data_dir} for the last {args.days} day(s)')
    return 1

  summary = summarize(records)

  if args.json:
    print(json.dumps(summary, indent=2))
    return 0

  print(f'Data points:      {summary["data_points"]}')
  print(f'Window:           {summary["first_timestamp"]} -> {summary["last_timestamp"]}')
  print('Health breakdown: ' + ', '.join(f'{k}={v}' for k, v in sorted(summary['health_breakdown'].items())))
  print(f'Avg query time:   {summary["avg_query_time"]:.1f}ms')
  print(f'Avg error rate:   {summary["avg_error_rate"] * 100:.2f}%')
  trends = summary['trends']
  if 'message' in trends:
    print(f'Trends:           {trends["message"]}')
  else:
    print(f'Trends:           response_time={trends["response_time"]}, error_rate={trends["error_rate"]}')
  return 0


if __name__ == '__main__':
  sys.exit(main())
