"""Unit tests for RealtimeMonitoringService health probes and fan-out."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import pytest

from nutrition_monitor.services import realtime_monitoring_service
from nutrition_monitor.services.realtime_monitoring_service import RealtimeMonitoringService


def _table_query(client):
  return client.table.return_value.select.return_value.limit.return_value


class FakeClock:
  """perf_counter stand-in advanced by the stubbed query."""

  def __init__(self):
    self.now = 100.0

  def perf_counter(self):
    return self.now


class TestSystemHealth:
  """Memory pressure and recent-restart detection."""

  @pytest.mark.asyncio
  @pytest.mark.parametrize('ratio, expected', [(0.5, 'healthy'), (0.9, 'warning'), (0.96, 'error')])
  async def test_memory_thresholds(self, realtime, probes, ratio, expected):
    probes.usage_ratio = ratio
    probes.uptime = 3600

    check = await realtime.check_system_health()

    assert check.status == expected
    assert check.details['uptime'] == 3600
    assert check.details['memory']['usage_ratio'] == ratio

  @pytest.mark.asyncio
  async def test_recent_restart_is_a_warning(self, realtime, probes):
    probes.uptime = 12

    check = await realtime.check_system_health()

    assert check.status == 'warning'
    assert 'Recent restart detected' in check.details['warnings']

  @pytest.mark.asyncio
  async def test_recent_restart_keeps_error(self, realtime, probes):
    probes.usage_ratio = 0.97
    probes.uptime = 5

    check = await realtime.check_system_health()

    assert check.status == 'error'
    assert len(check.details['warnings']) == 2


class TestDatabaseHealth:

  @pytest.mark.asyncio
  async def test_healthy_probe(self, realtime, mock_supabase_client):
    check = await realtime.check_database_health()

    assert check.status == 'healthy'
    assert check.response_time is not None
    mock_supabase_client.table.assert_called_with('nutrition_posts')

  @pytest.mark.asyncio
  async def test_connection_error(self, monitor, history, unreachable_supabase_client):
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: unreachable_supabase_client)

    check = await service.check_database_health()

    assert check.status == 'error'
    assert 'connection refused' in check.message

  @pytest.mark.asyncio
  async def test_missing_table_falls_back_to_connection_probe(self, monitor, history):
    client = MagicMock()
    _table_query(client).execute.side_effect = [
      Exception('relation "public.nutrition_posts" does not exist'),
      Exception('permission denied for schema public'),
    ]
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: client)

    check = await service.check_database_health()

    assert check.status == 'healthy'
    assert check.message == 'Database connection working (tables not created yet)'

  @pytest.mark.asyncio
  async def test_missing_table_everywhere_is_an_error(self, monitor, history):
    client = MagicMock()
    _table_query(client).execute.side_effect = Exception('Could not find the table in the schema cache')
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: client)

    check = await service.check_database_health()

    assert check.status == 'error'

  @pytest.mark.asyncio
  async def test_client_construction_failure(self, monitor, history):
    def no_credentials():
      raise ValueError('SUPABASE_URL is not set')

    service = RealtimeMonitoringService(monitor, history, client_factory=no_credentials)

    check = await service.check_database_health()

    assert check.status == 'error'
    assert check.message == 'SUPABASE_URL is not set'
    assert service.get_active_connections()['database'] == 0

  @pytest.mark.asyncio
  @pytest.mark.parametrize('latency, expected', [(0.4, 'healthy'), (1.2, 'warning'), (2.5, 'slow')])
  async def test_latency_classes(self, realtime, mock_supabase_client, monkeypatch, latency, expected):
    clock = FakeClock()

    def slow_execute():
      clock.now += latency
      return Mock(data=[{'count': 12}])

    _table_query(mock_supabase_client).execute.side_effect = slow_execute
    monkeypatch.setattr(realtime_monitoring_service, 'time', SimpleNamespace(perf_counter=clock.perf_counter))

    check = await realtime.check_database_health()

    assert check.status == expected
    assert check.response_time == pytest.approx(latency * 1000)


class TestHealthCheckCadence:
  """The health-check timer reads the memory probe before every tick."""

  @pytest.mark.parametrize('ratio, expected', [(0.5, 30.0), (0.85, 45.0), (0.95, 60.0)])
  def test_interval_follows_memory_pressure(self, realtime, probes, ratio, expected):
    probes.usage_ratio = ratio

    assert realtime._tasks[0].next_interval() == expected


class TestSupabaseHealth:

  @pytest.mark.asyncio
  async def test_all_services_healthy(self, realtime):
    check = await realtime.check_supabase_health()

    assert check.status == 'healthy'
    assert check.message == '3/3 services healthy'
    assert [s['service'] for s in check.details['services']] == ['database', 'storage', 'auth']

  @pytest.mark.asyncio
  async def test_partial_failure_is_a_warning(self, monitor, history, mock_supabase_client):
    mock_supabase_client.storage.list_buckets.side_effect = RuntimeError('storage offline')
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: mock_supabase_client)

    check = await service.check_supabase_health()

    assert check.status == 'warning'
    assert check.message == '2/3 services healthy'
    storage = check.details['services'][1]
    assert storage['status'] == 'error'
    assert 'storage offline' in storage['error']

  @pytest.mark.asyncio
  async def test_missing_auth_interface(self, monitor, history, mock_supabase_client):
    mock_supabase_client.auth = None
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: mock_supabase_client)

    check = await service.check_supabase_health()

    assert check.details['services'][2]['status'] == 'error'


class TestPerformHealthCheck:

  @pytest.mark.asyncio
  async def test_health_check_updates_status_and_logs(self, realtime):
    status = await realtime.perform_health_check()

    assert status.overall == 'healthy'
    assert realtime.health_status is status
    entry = realtime.monitor.log_writer.read('health_checks')[0]
    assert entry['type'] == 'health_check'
    assert entry['details'] == {'database': 'healthy', 'supabase': 'healthy', 'system': 'healthy'}

  @pytest.mark.asyncio
  async def test_unreachable_supabase_is_an_error(self, monitor, history, unreachable_supabase_client):
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: unreachable_supabase_client)

    status = await service.perform_health_check()

    assert status.overall == 'error'
    assert status.database.status == 'error'
    assert status.supabase.status == 'warning'


class TestSubscribers:

  def test_subscribe_replays_current_health(self, realtime):
    callback = Mock()

    unsubscribe = realtime.subscribe(callback)

    callback.assert_called_once()
    event, data = callback.call_args[0]
    assert event == 'health_update'
    assert data['overall'] == 'unknown'
    assert realtime.get_active_connections()['subscribers'] == 1

    unsubscribe()
    assert realtime.get_active_connections()['subscribers'] == 0

  @pytest.mark.asyncio
  async def test_failing_subscriber_does_not_block_others(self, realtime):
    broken = Mock(side_effect=RuntimeError('listener crashed'))
    healthy = Mock()
    realtime.subscribers.update({broken, healthy})

    await realtime.notify_subscribers('metrics_update', {'value': 1})

    broken.assert_called_once_with('metrics_update', {'value': 1})
    healthy.assert_called_once_with('metrics_update', {'value': 1})


class TestWebSocketFanOut:

  @pytest.mark.asyncio
  async def test_open_clients_receive_events(self, realtime, fake_websocket_factory):
    ws = fake_websocket_factory()
    realtime.add_websocket_client(ws)

    await realtime.notify_subscribers('health_update', {'overall': 'healthy'})

    assert json.loads(ws.sent[0]) == {'event': 'health_update', 'data': {'overall': 'healthy'}}

  @pytest.mark.asyncio
  async def test_fanout_skipped_under_memory_pressure(self, realtime, probes, fake_websocket_factory):
    ws = fake_websocket_factory()
    realtime.add_websocket_client(ws)
    callback = Mock()
    realtime.subscribers.add(callback)
    probes.usage_ratio = 0.92

    await realtime.notify_subscribers('metrics_update', {'value': 1})

    callback.assert_called_once()
    assert ws.sent == []

  def test_cleanup_drops_closed_clients(self, realtime, fake_websocket_factory):
    open_ws = fake_websocket_factory()
    closed_ws = fake_websocket_factory(open=False)
    realtime.add_websocket_client(open_ws)
    realtime.add_websocket_client(closed_ws)

    assert realtime.cleanup_websocket_clients() == 1
    assert realtime.websocket_clients == {open_ws}

  @pytest.mark.asyncio
  async def test_failed_send_removes_client(self, realtime, fake_websocket_factory):
    broken = fake_websocket_factory(fail_on_send=True)
    working = fake_websocket_factory()
    realtime.add_websocket_client(broken)
    realtime.add_websocket_client(working)

    await realtime.notify_websocket_clients('health_update', {})

    assert realtime.websocket_clients == {working}
    assert len(working.sent) == 1

  @pytest.mark.asyncio
  async def test_shutdown_closes_clients(self, realtime, fake_websocket_factory):
    ws = fake_websocket_factory()
    realtime.add_websocket_client(ws)
    realtime.subscribe(Mock())

    await realtime.shutdown()

    assert ws.closed
    assert realtime.websocket_clients == set()
    assert realtime.subscribers == set()


class TestCollection:

  @pytest.mark.asyncio
  async def test_collect_pushes_and_persists(self, realtime):
    realtime.monitor.record_query_metrics('q', 20.0, True)
    callback = Mock()
    realtime.subscribe(callback)

    snapshot = await realtime.collect_realtime_metrics()

    assert snapshot['performance']['summary']['total_queries'] == 1
    assert set(snapshot['active_connections']) == {'database', 'subscribers', 'websocket', 'http'}
    assert callback.call_args[0][0] == 'metrics_update'
    stored = realtime.get_historical_metrics(1)
    assert len(stored) == 1
    assert stored[0]['performance']['total_queries'] == 1
    assert stored[0]['timestamp'] == snapshot['timestamp']

  @pytest.mark.asyncio
  async def test_collect_failure_is_recorded(self, realtime, monkeypatch):
    def broken_report():
      raise RuntimeError('report failed')

    monkeypatch.setattr(realtime.monitor, 'generate_report', broken_report)

    assert await realtime.collect_realtime_metrics() is None
    assert realtime.monitor.errors[-1].type == 'realtime_metrics'


class TestMonitoringReport:

  @pytest.mark.asyncio
  async def test_report_flags_unhealthy_state(self, monitor, history, unreachable_supabase_client):
    service = RealtimeMonitoringService(monitor, history, client_factory=lambda: unreachable_supabase_client)
    await service.perform_health_check()
    for _ in range(3):
      monitor.record_query_metrics('broken', 1500.0, False)

    report = service.generate_monitoring_report()

    assert report['summary']['current_health'] == 'error'
    assert report['summary']['error_rate'] == 1.0
    assert report['trends']['message'] == 'Insufficient data for trend analysis'
    issue_types = [issue['type'] for issue in report['top_issues']]
    assert issue_types == ['health', 'error_rate', 'slow_queries']
    assert report['top_issues'][0]['severity'] == 'critical'
    categories = [r['category'] for r in report['recommendations']]
    assert categories == ['performance', 'reliability']
