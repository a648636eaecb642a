"""Unit tests for configuration, memory policy, category logs and correlation IDs."""

import json
import logging
import time
from datetime import datetime, timedelta, timezone

import pytest

from nutrition_monitor.lib.config import (
  ConfigurationError,
  MonitoringConfig,
  background_tasks_enabled,
  load_monitoring_config,
  parse_monitoring_config,
)
from nutrition_monitor.lib.distributed_tracing import (
  DEFAULT_CORRELATION_ID,
  generate_correlation_id,
  get_correlation_id,
  reset_correlation_id,
)
from nutrition_monitor.lib.log_writer import CategoryLogWriter
from nutrition_monitor.lib.memory_policy import health_check_interval, memory_status, websocket_fanout_allowed
from nutrition_monitor.lib.structured_logger import JSONFormatter, StructuredLogger
from nutrition_monitor.lib.supabase_client import create_supabase_client
from nutrition_monitor.lib.time_utils import day_stamp, to_iso, utc_now


class TestMonitoringConfig:

  def test_defaults(self):
    config = MonitoringConfig()

    assert config.slow_query_threshold_ms == 1000
    assert config.alerts.high_error_rate.threshold == 0.05
    assert config.alerts.slow_queries.enabled is True
    assert config.logging.retention_days == 30

  def test_partial_file_overrides_only_given_fields(self, tmp_path):
    path = tmp_path / 'monitoring-config.json'
    path.write_text(json.dumps({
      'metrics': {'database': {'slowQueries': {'threshold': 250}}},
      'alerts': {'slowQueries': {'enabled': False}},
    }))

    config = load_monitoring_config(path)

    assert config.slow_query_threshold_ms == 250
    assert config.alerts.slow_queries.enabled is False
    assert config.alerts.high_error_rate.threshold == 0.05
    assert config.logging.retention == '30 days'

  def test_slow_query_threshold_comes_from_metrics_section(self):
    config = parse_monitoring_config({'alerts': {'slowQueries': {'threshold': 5, 'enabled': True}}})

    assert config.slow_query_threshold_ms == 1000
    assert not hasattr(config.alerts.slow_queries, 'threshold')

  def test_missing_file_yields_defaults(self, tmp_path):
    assert load_monitoring_config(tmp_path / 'absent.json') == MonitoringConfig()

  def test_invalid_file_logs_and_yields_defaults(self, tmp_path, caplog):
    path = tmp_path / 'monitoring-config.json'
    path.write_text(json.dumps({'alerts': {'highErrorRate': {'threshold': 5}}}))

    with caplog.at_level(logging.WARNING):
      config = load_monitoring_config(path)

    assert config == MonitoringConfig()
    assert any('using defaults' in record.getMessage() for record in caplog.records)

  def test_malformed_json_yields_defaults(self, tmp_path):
    path = tmp_path / 'monitoring-config.json'
    path.write_text('{not json')

    assert load_monitoring_config(path) == MonitoringConfig()

  @pytest.mark.parametrize('raw', [
    {'metrics': {'database': {'slowQueries': {'threshold': 0}}}},
    {'alerts': {'highErrorRate': {'threshold': 1.5}}},
    {'logging': {'retention': 'forever'}},
  ])
  def test_validation_rejects_bad_values(self, raw):
    with pytest.raises(ConfigurationError):
      parse_monitoring_config(raw)

  def test_background_tasks_switch(self, monkeypatch):
    monkeypatch.setenv('MONITORING_BACKGROUND_TASKS', 'false')
    assert background_tasks_enabled() is False
    monkeypatch.setenv('MONITORING_BACKGROUND_TASKS', '1')
    assert background_tasks_enabled() is True


class TestMemoryPolicy:

  @pytest.mark.parametrize('ratio, expected', [(0.5, 30.0), (0.81, 45.0), (0.9, 45.0), (0.95, 60.0)])
  def test_health_check_interval_backs_off(self, ratio, expected):
    assert health_check_interval(ratio) == expected

  def test_websocket_fanout_gate(self):
    assert websocket_fanout_allowed(0.89) is True
    assert websocket_fanout_allowed(0.9) is False

  @pytest.mark.parametrize('ratio, expected', [(0.5, 'healthy'), (0.85, 'healthy'), (0.9, 'warning'), (0.96, 'error')])
  def test_memory_status(self, ratio, expected):
    assert memory_status(ratio) == expected


class TestCategoryLogWriter:

  def test_write_creates_directory_lazily(self, tmp_path):
    writer = CategoryLogWriter(tmp_path / 'logs')
    assert not (tmp_path / 'logs').exists()

    assert writer.write('alerts', {'type': 'slow_query', 'duration': 1500}) is True
    assert writer.read('alerts') == [{'type': 'slow_query', 'duration': 1500}]

  def test_write_failure_is_swallowed(self, tmp_path):
    blocker = tmp_path / 'logs'
    blocker.write_text('a file where the directory should be')
    writer = CategoryLogWriter(blocker)

    assert writer.write('errors', {'message': 'x'}) is False

  def test_unwritable_category_file_is_reported(self, tmp_path):
    (tmp_path / 'errors.log').mkdir()
    writer = CategoryLogWriter(tmp_path)

    assert writer.write('errors', {'message': 'x'}) is False
    assert writer.write('alerts', {'message': 'y'}) is True

  def test_first_write_after_midnight_archives_the_day(self, tmp_path):
    writer = CategoryLogWriter(tmp_path)
    writer.write('errors', {'n': 1})
    writer.handler_for('errors').rolloverAt = int(time.time())

    writer.write('errors', {'n': 2})

    yesterday = day_stamp(utc_now() - timedelta(days=1))
    archive = tmp_path / f'errors.log.{yesterday}'
    assert json.loads(archive.read_text()) == {'n': 1}
    assert writer.read('errors') == [{'n': 2}]

  def test_rollover_keeps_retention_days_of_archives(self, tmp_path):
    writer = CategoryLogWriter(tmp_path, retention_days=2)
    (tmp_path / 'errors.log.2026-01-01').write_text('{}\n')
    (tmp_path / 'errors.log.2026-01-02').write_text('{}\n')
    writer.write('errors', {'n': 1})

    writer.handler_for('errors').doRollover()

    archives = sorted(p.name for p in tmp_path.glob('errors.log.*'))
    assert archives == ['errors.log.2026-01-02', f'errors.log.{day_stamp()}']

  def test_close_releases_files(self, tmp_path):
    writer = CategoryLogWriter(tmp_path)
    writer.write('alerts', {'n': 1})
    handler = writer.handler_for('alerts')

    writer.close()

    assert handler.stream is None
    assert writer.write('alerts', {'n': 2}) is True
    assert writer.read('alerts') == [{'n': 1}, {'n': 2}]
    writer.close()

  def test_read_skips_malformed_lines(self, tmp_path):
    writer = CategoryLogWriter(tmp_path)
    writer.path_for('alerts').write_text('{"ok": 1}\nnot json\n\n{"ok": 2}\n')

    assert writer.read('alerts') == [{'ok': 1}, {'ok': 2}]


class TestStructuredLogging:

  def test_formatter_emits_context_and_drops_secrets(self):
    logger = StructuredLogger('nutrition_monitor.tests')
    record = logger.logger.makeRecord(
      'nutrition_monitor.tests', logging.INFO, __file__, 1, 'Slow query detected', None, None,
      extra={'query_name': 'load_posts', 'duration_ms': 1500},
    )

    data = json.loads(JSONFormatter().format(record))

    assert data['message'] == 'Slow query detected'
    assert data['query_name'] == 'load_posts'
    assert data['duration_ms'] == 1500
    assert data['level'] == 'INFO'

  def test_scrubbed_keys_never_reach_the_record(self, caplog):
    logger = StructuredLogger('nutrition_monitor.tests.scrub')
    with caplog.at_level(logging.INFO):
      logger.info('Connecting', service_role_key='secret', table='nutrition_posts')

    record = caplog.records[-1]
    assert not hasattr(record, 'service_role_key')
    assert record.table == 'nutrition_posts'

  def test_caller_location_is_reported(self, caplog):
    logger = StructuredLogger('nutrition_monitor.tests.location')
    with caplog.at_level(logging.INFO):
      logger.info('plain')
      logger.warning('warned')
      logger.log_event('monitor.started')

    assert {record.funcName for record in caplog.records[-3:]} == {'test_caller_location_is_reported'}
    assert {record.module for record in caplog.records[-3:]} == {'test_lib'}

  def test_correlation_id_lifecycle(self):
    generated = generate_correlation_id('health-check')

    assert generated.startswith('health-check-')
    assert get_correlation_id() == generated
    reset_correlation_id()
    assert get_correlation_id() == DEFAULT_CORRELATION_ID


class TestSupabaseClientFactory:

  def test_missing_credentials_are_named(self, monkeypatch):
    monkeypatch.delenv('SUPABASE_URL', raising=False)
    monkeypatch.setenv('SUPABASE_SERVICE_ROLE_KEY', 'service-role')

    with pytest.raises(ValueError, match='SUPABASE_URL'):
      create_supabase_client()


class TestTimestamps:

  def test_whole_seconds_keep_fixed_width(self):
    whole = to_iso(datetime(2026, 10, 16, 12, 0, 0, tzinfo=timezone.utc))
    fraction = to_iso(datetime(2026, 10, 16, 12, 0, 0, 500000, tzinfo=timezone.utc))

    assert whole == '2026-10-16T12:00:00.000000Z'
    assert whole < fraction
