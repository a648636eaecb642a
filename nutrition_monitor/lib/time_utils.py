"""UTC timestamp helpers shared by logs, records and persisted snapshots."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Render an aware datetime as fixed-width ISO 8601 (microseconds) with a trailing 'Z'."""
    return moment.astimezone(timezone.utc).isoformat(timespec='microseconds').replace('+00:00', 'Z')


def utc_now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 timestamp written by to_iso() (or any aware ISO string)."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def day_stamp(moment: datetime | None = None) -> str:
    """YYYY-MM-DD of the given moment in UTC (defaults to now)."""
    return (moment or utc_now()).astimezone(timezone.utc).strftime('%Y-%m-%d')
