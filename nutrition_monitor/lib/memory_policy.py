"""Memory readings and the self-protective policies keyed on them.

The monitoring service backs off when the host is under memory pressure: health
checks run less often and WebSocket fan-out is skipped. The thresholds live
here as plain functions so they can be tuned and tested on their own.
"""

import os
import time
from dataclasses import asdict, dataclass

import psutil

HEALTH_CHECK_INTERVAL_NORMAL = 30.0
HEALTH_CHECK_INTERVAL_HIGH = 45.0
HEALTH_CHECK_INTERVAL_CRITICAL = 60.0

WEBSOCKET_FANOUT_LIMIT = 0.9
MEMORY_WARNING_RATIO = 0.85
MEMORY_ERROR_RATIO = 0.95
RECENT_RESTART_SECONDS = 30.0


@dataclass
class MemoryUsage:
    """Point-in-time memory reading for this process and its host."""

    rss: int
    vms: int
    process_percent: float
    total: int
    available: int
    usage_ratio: float

    def to_dict(self) -> dict:
        return asdict(self)


def read_memory_usage() -> MemoryUsage:
    """Read process and host memory.

    ``usage_ratio`` (host memory in use, 0-1) is the figure every policy below
    is keyed on.
    """
    process = psutil.Process(os.getpid())
    info = process.memory_info()
    host = psutil.virtual_memory()
    return MemoryUsage(
        rss=info.rss,
        vms=info.vms,
        process_percent=round(process.memory_percent(), 2),
        total=host.total,
        available=host.available,
        usage_ratio=host.percent / 100,
    )


def process_uptime() -> float:
    """Seconds since this process started."""
    return max(0.0, time.time() - psutil.Process(os.getpid()).create_time())


def health_check_interval(usage_ratio: float) -> float:
    """Seconds until the next health check under the given memory pressure."""
    if usage_ratio > 0.9:
        return HEALTH_CHECK_INTERVAL_CRITICAL
    if usage_ratio > 0.8:
        return HEALTH_CHECK_INTERVAL_HIGH
    return HEALTH_CHECK_INTERVAL_NORMAL


def websocket_fanout_allowed(usage_ratio: float) -> bool:
    return usage_ratio < WEBSOCKET_FANOUT_LIMIT


def memory_status(usage_ratio: float) -> str:
    """Classify memory pressure as 'healthy', 'warning' or 'error'."""
    if usage_ratio > MEMORY_ERROR_RATIO:
        return 'error'
    if usage_ratio > MEMORY_WARNING_RATIO:
        return 'warning'
    return 'healthy'
