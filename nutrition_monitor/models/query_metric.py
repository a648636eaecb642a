from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

RECENT_CALLS_LIMIT = 100


@dataclass
class QueryCall:
    """One recorded invocation of a monitored operation."""

    timestamp: str
    duration: float
    success: bool
    context: Dict[str, Any]
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'duration': self.duration,
            'success': self.success,
            'context': self.context,
            'error': self.error,
        }


@dataclass
class QueryMetric:
    """Aggregated timing and success counters for one named operation.

    ``avg_duration`` is derived from the running sums on every read, so it can
    never drift from ``total_duration / total_calls``.
    """

    name: str
    total_calls: int = 0
    total_duration: float = 0.0
    success_count: int = 0
    error_count: int = 0
    max_duration: float = 0.0
    min_duration: Optional[float] = None
    recent_calls: Deque[QueryCall] = field(default_factory=lambda: deque(maxlen=RECENT_CALLS_LIMIT))

    @property
    def avg_duration(self) -> float:
        return self.total_duration / self.total_calls if self.total_calls else 0.0

    @property
    def success_rate(self) -> float:
        return self.success_count / self.total_calls if self.total_calls else 0.0

    def record(self, call: QueryCall) -> None:
        self.total_calls += 1
        self.total_duration += call.duration
        if call.success:
            self.success_count += 1
        else:
            self.error_count += 1
        self.max_duration = max(self.max_duration, call.duration)
        self.min_duration = call.duration if self.min_duration is None else min(self.min_duration, call.duration)
        self.recent_calls.append(call)

    def to_dict(self, include_recent: bool = True) -> dict:
        data = {
            'name': self.name,
            'total_calls': self.total_calls,
            'total_duration': self.total_duration,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'avg_duration': self.avg_duration,
            'max_duration': self.max_duration,
            'min_duration': self.min_duration,
        }
        if include_recent:
            data['recent_calls'] = [call.to_dict() for call in self.recent_calls]
        return data
