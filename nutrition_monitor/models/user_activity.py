from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Set

from nutrition_monitor.lib.time_utils import parse_iso

RECENT_ACTIVITY_LIMIT = 50
ANONYMOUS_USER = 'anonymous'


@dataclass
class ActivityEvent:
    timestamp: str
    action: str
    details: Dict[str, Any]
    session_id: str

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'action': self.action,
            'details': self.details,
            'session_id': self.session_id,
        }


@dataclass
class UserActivityMetric:
    """Per-user action counters with a bounded trail of recent actions."""

    user_id: str
    first_seen: str
    last_seen: str
    total_actions: int = 0
    sessions: Set[str] = field(default_factory=set)
    recent_activity: Deque[ActivityEvent] = field(default_factory=lambda: deque(maxlen=RECENT_ACTIVITY_LIMIT))

    def record(self, event: ActivityEvent) -> None:
        self.total_actions += 1
        self.sessions.add(event.session_id)
        self.last_seen = event.timestamp
        self.recent_activity.append(event)

    def seen_since(self, moment: datetime) -> bool:
        return parse_iso(self.last_seen) > moment

    def summary(self) -> dict:
        return {
            'user_id': self.user_id,
            'total_actions': self.total_actions,
            'sessions': len(self.sessions),
            'last_seen': self.last_seen,
        }

    def to_dict(self) -> dict:
        return {
            **self.summary(),
            'first_seen': self.first_seen,
            'session_ids': sorted(self.sessions),
            'recent_activity': [event.to_dict() for event in self.recent_activity],
        }
