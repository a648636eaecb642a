"""Monitoring configuration.

The optional JSON file (config/monitoring-config.json by default) uses camelCase
keys and may override any subset of fields; everything it leaves out keeps its
default. Paths and credentials come from environment variables.
"""

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from nutrition_monitor.lib.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/monitoring-config.json'
DEFAULT_LOGS_DIR = 'logs'
DEFAULT_DATA_DIR = 'data/monitoring'

_RETENTION_PATTERN = re.compile(r'^\s*(\d+)\s*days?\s*$', re.IGNORECASE)


class ConfigurationError(Exception):
    """Raised when the monitoring configuration file is unreadable or invalid."""


class _ConfigSection(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


class SlowQueryMetricsConfig(_ConfigSection):
    threshold: float = Field(default=1000, gt=0, description='Slow query threshold (ms)')


class DatabaseMetricsConfig(_ConfigSection):
    query_performance: bool = True
    slow_queries: SlowQueryMetricsConfig = Field(default_factory=SlowQueryMetricsConfig)


class ApplicationMetricsConfig(_ConfigSection):
    response_time: bool = True
    error_rate: bool = True
    user_activity: bool = True


class MetricsConfig(_ConfigSection):
    database: DatabaseMetricsConfig = Field(default_factory=DatabaseMetricsConfig)
    application: ApplicationMetricsConfig = Field(default_factory=ApplicationMetricsConfig)


class SlowQueryAlertConfig(_ConfigSection):
    enabled: bool = True


class ErrorRateAlertConfig(_ConfigSection):
    threshold: float = Field(default=0.05, gt=0, le=1, description='Error rate fraction')
    enabled: bool = True


class AlertsConfig(_ConfigSection):
    slow_queries: SlowQueryAlertConfig = Field(default_factory=SlowQueryAlertConfig)
    high_error_rate: ErrorRateAlertConfig = Field(default_factory=ErrorRateAlertConfig)


class LoggingConfig(_ConfigSection):
    level: str = 'info'
    retention: str = '30 days'

    @field_validator('retention')
    @classmethod
    def validate_retention(cls, v: str) -> str:
        """Retention must read like '30 days'."""
        if not _RETENTION_PATTERN.match(v):
            raise ValueError(f"retention must look like '<N> days', got {v!r}")
        return v

    @property
    def retention_days(self) -> int:
        return int(_RETENTION_PATTERN.match(self.retention).group(1))


class MonitoringConfig(_ConfigSection):
    """Typed monitoring configuration with defaults for every field."""

    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def slow_query_threshold_ms(self) -> float:
        return self.metrics.database.slow_queries.threshold


def parse_monitoring_config(raw: dict) -> MonitoringConfig:
    """Validate a (possibly partial) config mapping.

    Raises:
        ConfigurationError: If a value fails validation
    """
    try:
        return MonitoringConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f'Invalid monitoring configuration: {e}') from e


def load_monitoring_config(path: Optional[Path | str] = None) -> MonitoringConfig:
    """Load the monitoring configuration, falling back to defaults.

    A missing file silently yields defaults. An unreadable or invalid file is
    logged as a warning and also yields defaults, so a bad config never stops
    the host from booting.

    Args:
        path: Config file path (defaults to MONITORING_CONFIG_PATH or config/monitoring-config.json)

    Returns:
        MonitoringConfig instance
    """
    config_path = Path(path or os.getenv('MONITORING_CONFIG_PATH', DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        return MonitoringConfig()

    try:
        with open(config_path, encoding='utf-8') as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ConfigurationError('Monitoring configuration must be a JSON object')
        return parse_monitoring_config(raw)
    except (OSError, json.JSONDecodeError, ConfigurationError) as e:
        logger.warning(f'Could not load monitoring config, using defaults: {e}', config_path=str(config_path))
        return MonitoringConfig()


@dataclass(frozen=True)
class MonitoringPaths:
    """Filesystem locations used by the monitoring services."""

    logs_dir: Path = Path(DEFAULT_LOGS_DIR)
    data_dir: Path = Path(DEFAULT_DATA_DIR)

    @classmethod
    def from_env(cls) -> 'MonitoringPaths':
        return cls(
            logs_dir=Path(os.getenv('MONITORING_LOGS_DIR', DEFAULT_LOGS_DIR)),
            data_dir=Path(os.getenv('MONITORING_DATA_DIR', DEFAULT_DATA_DIR)),
        )


def background_tasks_enabled() -> bool:
    """Whether the app lifespan should start the monitoring timers."""
    return os.getenv('MONITORING_BACKGROUND_TASKS', 'true').lower() not in ('0', 'false', 'no', 'off')
