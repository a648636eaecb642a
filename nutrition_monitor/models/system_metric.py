from dataclasses import dataclass
from typing import Any, Dict

# 24 hours of samples at a 30 second cadence
SYSTEM_METRICS_LIMIT = 24 * 60 * 2


@dataclass
class SystemMetricSample:
    """Process snapshot taken by the periodic system-metrics collector.

    ``memory`` holds rss, vms, process_percent, total, available and usage_ratio;
    ``cpu`` holds user/system CPU seconds and the percent since the last sample.
    """

    timestamp: str
    memory: Dict[str, Any]
    uptime: float
    cpu: Dict[str, float]
    active_handles: int
    active_requests: int

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'memory': self.memory,
            'uptime': self.uptime,
            'cpu': self.cpu,
            'active_handles': self.active_handles,
            'active_requests': self.active_requests,
        }
