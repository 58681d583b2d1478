"""Time and interval helpers shared by slot generation and booking."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta

# Slot grid granularity. Deliberately independent of service durations.
SLOT_STEP_MINUTES = 30


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval test: [start_a, end_a) and [start_b, end_b) intersect."""
    return start_a < end_b and start_b < end_a


def parse_wall_clock(value: str) -> time:
    """Parse an "HH:MM" wall-clock string."""
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"invalid wall-clock time {value!r}, expected HH:MM") from exc


def format_wall_clock(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value else None


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def at_offset(day: date, minutes: int) -> datetime:
    """Naive local datetime ``minutes`` after midnight of ``day``."""
    return datetime.combine(day, time.min) + timedelta(minutes=minutes)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open bounds [00:00, next day 00:00) of a calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def day_of_week(day: date) -> int:
    """Day index with 0=Sunday .. 6=Saturday."""
    # Python's weekday() is 0=Monday.
    return (day.weekday() + 1) % 7


def parse_timestamp(value: object) -> datetime:
    """Parse an ISO-8601 timestamp into a naive datetime.

    Offsets are dropped rather than converted: stored instants are naive local
    timestamps.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1]
        parsed = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"invalid timestamp {value!r}")
    return parsed.replace(tzinfo=None)


def parse_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        return date.fromisoformat(value.strip()[:10])
    raise ValueError(f"invalid date {value!r}")
