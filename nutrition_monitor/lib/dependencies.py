"""FastAPI dependencies resolving the monitoring services from app.state.

The app factory constructs one PerformanceMonitor and one
RealtimeMonitoringService per application and stores them on ``app.state``;
tests build a fresh app (and fresh services) per test.
"""

from fastapi import HTTPException, Request

from nutrition_monitor.services.performance_monitor import PerformanceMonitor
from nutrition_monitor.services.realtime_monitoring_service import RealtimeMonitoringService


def get_performance_monitor(request: Request) -> PerformanceMonitor:
  monitor = getattr(request.app.state, 'performance_monitor', None)
  if monitor is None:
    raise HTTPException(status_code=503, detail='Performance monitor not initialized')
  return monitor


def get_realtime_service(request: Request) -> RealtimeMonitoringService:
  realtime = getattr(request.app.state, 'realtime_monitoring', None)
  if realtime is None:
    raise HTTPException(status_code=503, detail='Realtime monitoring not initialized')
  return realtime
