"""
Temporal utilities - minute-of-day arithmetic for the week/day grid.

All timestamps are ISO-8601 strings on the wire. Internally they are local,
timezone-aware datetimes: naive input is read as local wall time, offset input
is converted to the local zone. Minute values are minutes since local midnight.
"""

from datetime import date, datetime, time, timedelta

from blockcal.config import MINUTES_PER_DAY, SNAP_MIN
from blockcal.errors import ValidationError


def parse_iso(value: str | datetime) -> datetime:
    """
    Parse an ISO-8601 timestamp into a local aware datetime.

    Raises:
        ValidationError: if the value is not a parseable timestamp
    """
    if isinstance(value, datetime):
        return value.astimezone()
    try:
        dt = datetime.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"invalid timestamp {value!r}") from e
    return dt.astimezone()


def parse_date(value: str | date) -> date:
    """
    Parse an ISO date (a full timestamp is accepted; its local date is used).

    Raises:
        ValidationError: if the value is not a parseable date
    """
    if isinstance(value, datetime):
        return value.astimezone().date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return parse_iso(value).date()


def to_iso(dt: datetime) -> str:
    return dt.astimezone().isoformat(timespec="seconds")


def local_midnight(day: date) -> datetime:
    """Local midnight of a calendar date, as an aware datetime."""
    return datetime.combine(day, time()).astimezone()


def minutes_since_midnight(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def duration_minutes(a: datetime, b: datetime) -> int:
    """Whole minutes from a to b, never negative."""
    return max(0, round((b - a).total_seconds() / 60))


def snap_minutes(mins: float, step: int = SNAP_MIN) -> int:
    """Snap to the nearest multiple of step, floored at 0."""
    return max(0, round(mins / step) * step)


def clamp(v, lo, hi):
    return min(hi, max(lo, v))


def overlaps(a_start: float, a_end: float, b_start: float, b_end: float) -> bool:
    """
    Half-open interval intersection: [a_start, a_end) vs [b_start, b_end).

    Touching boundaries (a_end == b_start) do not overlap.
    """
    return max(a_start, b_start) < min(a_end, b_end)


def at_minutes(day: date, minutes: int) -> datetime:
    """Aware datetime at local midnight of day plus an unclamped minute offset."""
    return (local_midnight(day) + timedelta(minutes=minutes)).astimezone()


def iso_for_date_and_minutes(day: str | date, minutes: int) -> str:
    """
    ISO timestamp for a calendar date plus a minute offset.

    The offset is clamped to the day, so 1440 lands on the next midnight
    (the end of a block that runs to day-end).
    """
    return to_iso(at_minutes(parse_date(day), clamp(minutes, 0, MINUTES_PER_DAY)))


def iso_for_day_and_minutes(week_start_iso: str | date, day_index: int, minutes: int) -> str:
    """Week-grid addressing: column day_index (0 = week start) plus minutes."""
    day = parse_date(week_start_iso) + timedelta(days=day_index)
    return iso_for_date_and_minutes(day, minutes)


def week_start(day: date) -> date:
    """Monday of the ISO week containing day."""
    return day - timedelta(days=day.isoweekday() - 1)


def week_days(start: date, count: int = 7) -> list[date]:
    return [start + timedelta(days=i) for i in range(count)]


def time_string_to_minutes(value: str) -> int:
    """
    "HH:MM" -> minutes since midnight.

    Raises:
        ValidationError: on malformed input
    """
    try:
        hh, mm = value.strip().split(":")[:2]
        hours, minutes = int(hh), int(mm)
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"invalid time {value!r} (use HH:MM)") from e
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValidationError(f"invalid time {value!r} (use HH:MM)")
    return hours * 60 + minutes


def minutes_to_time_string(minutes: int) -> str:
    m = clamp(int(minutes), 0, MINUTES_PER_DAY)
    return f"{m // 60:02d}:{m % 60:02d}"


def is_within_sleep(start_minutes: int, sleep_start: str, sleep_end: str) -> bool:
    """
    Whether a start minute falls inside the sleep window.

    The window wraps past midnight when sleep_start > sleep_end
    (23:00-07:00). An empty window (start == end) never matches.
    """
    start = time_string_to_minutes(sleep_start)
    end = time_string_to_minutes(sleep_end)
    if start == end:
        return False
    if start < end:
        return start <= start_minutes < end
    return start_minutes >= start or start_minutes < end
