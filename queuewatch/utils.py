from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp; everything stored by queuewatch is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_ts(value: Optional[datetime]) -> Optional[str]:
    # Fixed precision keeps stored timestamps comparable as plain strings.
    if value is None:
        return None
    return value.isoformat(timespec='microseconds')


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def floor_hour(value: datetime) -> datetime:
    return value.replace(minute=0, second=0, microsecond=0)


def floor_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def unix_timestamp(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def from_unix_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def seconds_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds()


def format_uptime(seconds: int) -> str:
    seconds = abs(int(seconds))

    if seconds < 60:
        return f"{seconds}s"

    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"

    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"

    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"


ONE_HOUR = timedelta(hours=1)
ONE_MINUTE = timedelta(minutes=1)
