"""
Local wall-clock helpers.

All reminder times are naive local datetimes: no time-zone conversion is
applied anywhere in the scheduler.
"""
import re
from datetime import date, datetime, time
from typing import Optional

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def now_local() -> datetime:
    return datetime.now().replace(microsecond=0)


def to_local_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Strip tzinfo from a datetime without converting it.
    - Aware datetimes keep their wall-clock fields and lose tzinfo
    - Naive datetimes are returned as-is
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.replace(tzinfo=None)


def parse_hhmm(value: str) -> time:
    """Parse a ``HH:mm`` string into a ``datetime.time``. Raises ValueError."""
    match = _HHMM_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"expected HH:mm, got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def at_time(day: date, value: time) -> datetime:
    return datetime.combine(day, value)


def sunday_weekday(dt: datetime) -> int:
    """Weekday index with 0 = Sunday ... 6 = Saturday."""
    return (dt.weekday() + 1) % 7
