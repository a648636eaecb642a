"""Shared test fixtures and utilities for all tests.

This conftest.py provides reusable fixtures that can be used across
unit, contract, and integration tests: monitoring services wired to temporary
log/metrics directories, controllable memory and uptime probes, mock Supabase
clients, and a FastAPI app built from the real factory with background timers
switched off.
"""

import sys
from pathlib import Path

# Ensure the project root is first in sys.path so `nutrition_monitor` and
# `scripts` resolve to this checkout
project_root = str(Path(__file__).parent.parent.absolute())
if project_root not in sys.path:
    sys.path.insert(0, project_root)
elif sys.path[0] != project_root:
    sys.path.remove(project_root)
    sys.path.insert(0, project_root)

from unittest.mock import MagicMock, Mock

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

from nutrition_monitor.app import create_app
from nutrition_monitor.lib.config import MonitoringConfig, MonitoringPaths
from nutrition_monitor.lib.log_writer import CategoryLogWriter
from nutrition_monitor.lib.memory_policy import MemoryUsage
from nutrition_monitor.services.metrics_history import MetricsHistory
from nutrition_monitor.services.performance_monitor import PerformanceMonitor
from nutrition_monitor.services.realtime_monitoring_service import RealtimeMonitoringService


# ============================================================================
# Probe Fixtures
# ============================================================================

GIB = 1024 ** 3


def make_memory_usage(ratio: float) -> MemoryUsage:
    """Synthetic memory reading with the given host usage ratio."""
    total = 16 * GIB
    return MemoryUsage(
        rss=200 * 1024 ** 2,
        vms=400 * 1024 ** 2,
        process_percent=1.2,
        total=total,
        available=int(total * (1 - ratio)),
        usage_ratio=ratio,
    )


class ProbeState:
    """Mutable memory ratio / uptime read by the injected probes."""

    def __init__(self, usage_ratio: float = 0.5, uptime: float = 3600.0):
        self.usage_ratio = usage_ratio
        self.uptime = uptime

    def memory(self) -> MemoryUsage:
        return make_memory_usage(self.usage_ratio)

    def read_uptime(self) -> float:
        return self.uptime


@pytest.fixture
def probes():
    """Healthy defaults: 50% memory in use, up for an hour."""
    return ProbeState()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def monitoring_paths(tmp_path):
    return MonitoringPaths(logs_dir=tmp_path / 'logs', data_dir=tmp_path / 'data' / 'monitoring')


@pytest.fixture
def config():
    return MonitoringConfig()


@pytest.fixture
def log_writer(monitoring_paths):
    return CategoryLogWriter(monitoring_paths.logs_dir, retention_days=30)


@pytest.fixture
def monitor(config, log_writer, probes):
    """PerformanceMonitor writing into tmp_path, timers not started."""
    return PerformanceMonitor(
        config=config,
        log_writer=log_writer,
        memory_probe=probes.memory,
        uptime_probe=probes.read_uptime,
    )


@pytest.fixture
def history(monitoring_paths):
    return MetricsHistory(monitoring_paths.data_dir)


@pytest.fixture
def realtime(monitor, history, mock_supabase_client):
    """RealtimeMonitoringService backed by a healthy mock Supabase client."""
    return RealtimeMonitoringService(monitor, history, client_factory=lambda: mock_supabase_client)


# ============================================================================
# Mock Supabase Fixtures
# ============================================================================

def _table_query(client: MagicMock) -> MagicMock:
    """The mock returned by client.table(...).select(...).limit(...)."""
    return client.table.return_value.select.return_value.limit.return_value


@pytest.fixture
def mock_supabase_client():
    """Supabase client whose table read and bucket listing succeed."""
    client = MagicMock()
    _table_query(client).execute.return_value = Mock(data=[{'count': 12}])
    client.storage.list_buckets.return_value = [Mock(name='images')]
    return client


@pytest.fixture
def unreachable_supabase_client():
    """Supabase client whose network calls all fail with a connection error."""
    client = MagicMock()
    _table_query(client).execute.side_effect = ConnectionError('connection refused')
    client.storage.list_buckets.side_effect = ConnectionError('connection refused')
    return client


# ============================================================================
# WebSocket Fixtures
# ============================================================================

class FakeWebSocket:
    """Stand-in for a Starlette WebSocket that records sent frames."""

    def __init__(self, open: bool = True, fail_on_send: bool = False):
        state = WebSocketState.CONNECTED if open else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = state
        self.fail_on_send = fail_on_send
        self.sent = []
        self.closed = False

    async def send_text(self, text: str) -> None:
        if self.fail_on_send:
            raise RuntimeError('socket broken')
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED


@pytest.fixture
def fake_websocket_factory():
    return FakeWebSocket


# ============================================================================
# FastAPI Application Fixtures
# ============================================================================

@pytest.fixture
def app(config, monitoring_paths, probes, mock_supabase_client):
    """App from the real factory with a healthy Supabase mock and no timers."""
    return create_app(
        config=config,
        paths=monitoring_paths,
        client_factory=lambda: mock_supabase_client,
        memory_probe=probes.memory,
        uptime_probe=probes.read_uptime,
        start_background_tasks=False,
    )


@pytest.fixture
def client(app):
    """Fixture that provides a test client for the app."""
    return TestClient(app)


@pytest.fixture
def unhealthy_app(config, monitoring_paths, probes, unreachable_supabase_client):
    """App whose Supabase probes all fail."""
    return create_app(
        config=config,
        paths=monitoring_paths,
        client_factory=lambda: unreachable_supabase_client,
        memory_probe=probes.memory,
        uptime_probe=probes.read_uptime,
        start_background_tasks=False,
    )


@pytest.fixture
def unhealthy_client(unhealthy_app):
    return TestClient(unhealthy_app)

