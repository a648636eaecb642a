"""FastAPI application for the nutrition platform monitoring service."""

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from supabase import Client

from nutrition_monitor.lib.config import (
  MonitoringConfig,
  MonitoringPaths,
  background_tasks_enabled,
  load_monitoring_config,
)
from nutrition_monitor.lib.distributed_tracing import reset_correlation_id, set_correlation_id
from nutrition_monitor.lib.log_writer import CategoryLogWriter
from nutrition_monitor.lib.memory_policy import MemoryUsage, process_uptime, read_memory_usage
from nutrition_monitor.lib.metrics_middleware import request_monitoring_middleware
from nutrition_monitor.lib.structured_logger import StructuredLogger
from nutrition_monitor.lib.supabase_client import get_supabase_client
from nutrition_monitor.routers import router
from nutrition_monitor.services.metrics_history import MetricsHistory
from nutrition_monitor.services.performance_monitor import PerformanceMonitor
from nutrition_monitor.services.realtime_monitoring_service import RealtimeMonitoringService

logger = StructuredLogger(__name__)

MONITORING_PREFIX = '/api/admin/monitoring'


# Load environment variables from .env.local if it exists
def load_env_file(filepath: str) -> None:
  """Load environment variables from a file."""
  if Path(filepath).exists():
    with open(filepath) as f:
      for line in f:
        line = line.strip()
        if line and not line.startswith('#'):
          key, _, value = line.partition('=')
          if key and value:
            os.environ[key] = value


def create_app(
  config: Optional[MonitoringConfig] = None,
  paths: Optional[MonitoringPaths] = None,
  client_factory: Callable[[], Client] = get_supabase_client,
  memory_probe: Callable[[], MemoryUsage] = read_memory_usage,
  uptime_probe: Callable[[], float] = process_uptime,
  start_background_tasks: Optional[bool] = None,
) -> FastAPI:
  """Build the app with its own PerformanceMonitor and RealtimeMonitoringService.

  Args:
      config: Monitoring configuration (loaded from MONITORING_CONFIG_PATH when omitted)
      paths: Log and metrics directories (from the environment when omitted)
      client_factory: Returns the Supabase client used by health probes
      memory_probe: Memory reading used by health checks and fan-out gating
      uptime_probe: Process uptime reading used by the system health check
      start_background_tasks: Start the timers in the lifespan (MONITORING_BACKGROUND_TASKS when omitted)

  Returns:
      Configured FastAPI application
  """
  config = config or load_monitoring_config()
  paths = paths or MonitoringPaths.from_env()
  if start_background_tasks is None:
    start_background_tasks = background_tasks_enabled()

  monitor = PerformanceMonitor(
    config=config,
    log_writer=CategoryLogWriter(paths.logs_dir, retention_days=config.logging.retention_days),
    memory_probe=memory_probe,
    uptime_probe=uptime_probe,
  )
  realtime = RealtimeMonitoringService(monitor, MetricsHistory(paths.data_dir), client_factory=client_factory)

  @asynccontextmanager
  async def lifespan(app: FastAPI):
    """Start the monitoring timers and stop them on shutdown."""
    if start_background_tasks:
      monitor.start()
      realtime.start()
    logger.log_event('app.started', context={'background_tasks': start_background_tasks})
    try:
      yield
    finally:
      await realtime.shutdown()
      await monitor.shutdown()

  app = FastAPI(
    title='Nutrition Monitoring API',
    description='Query performance, user activity and health monitoring for the nutrition platform',
    version='0.1.0',
    lifespan=lifespan,
  )
  app.state.monitoring_config = config
  app.state.performance_monitor = monitor
  app.state.realtime_monitoring = realtime

  app.add_middleware(
    CORSMiddleware,
    allow_origins=[
      'http://localhost:3000',
      'http://127.0.0.1:3000',
    ],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
  )

  # Registered first so it runs inside the correlation-id middleware below
  app.middleware('http')(request_monitoring_middleware)

  @app.middleware('http')
  async def add_correlation_id(request: Request, call_next):
    """Bind X-Correlation-ID (or a new UUID) for logging and echo it on the response."""
    correlation_id = request.headers.get('X-Correlation-ID', str(uuid4()))
    token = set_correlation_id(correlation_id)
    request.state.correlation_id = correlation_id
    try:
      response = await call_next(request)
    finally:
      reset_correlation_id(token)
    response.headers['X-Correlation-ID'] = correlation_id
    return response

  @app.get('/health')
  async def health_root():
    """Liveness endpoint at root level (for load balancers)."""
    return {'status': 'healthy'}

  # Add /api/health for consistency with API structure
  @app.get('/api/health')
  async def health_api():
    """Liveness endpoint under /api prefix."""
    return {'status': 'healthy'}

  @app.get('/metrics')
  async def metrics_root():
    """Prometheus metrics endpoint at root level (for monitoring systems)."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

  @app.websocket('/monitoring-ws')
  async def monitoring_websocket(websocket: WebSocket):
    """Register the socket for health_update / metrics_update pushes until it disconnects."""
    await websocket.accept()
    realtime.add_websocket_client(websocket)
    try:
      while True:
        await websocket.receive_text()
    except WebSocketDisconnect:
      logger.info('Monitoring WebSocket client disconnected')
    finally:
      realtime.remove_websocket_client(websocket)

  app.include_router(router, prefix=MONITORING_PREFIX)

  return app


# Load .env files
load_env_file('.env')
load_env_file('.env.local')

app = create_app()
