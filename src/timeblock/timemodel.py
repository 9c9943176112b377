"""Clock-time arithmetic and the task duration policy.

Times are ``HH:MM`` strings on a 24-hour clock and are converted to minutes
since midnight for arithmetic. Ranges are half-open: ``[start, end)``.
"""

from __future__ import annotations

import re
from datetime import date, timedelta

from timeblock.errors import DurationOutOfRange, InvalidTimeFormat, UnsplittableSegment
from timeblock.models import DurationKind, Placement

MINUTES_PER_DAY = 24 * 60
MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 360
SNAP_INTERVALS = (15, 30, 60)

# Seconds are accepted (database time columns) and dropped.
_TIME_RE = re.compile(r"^(\d{1,2}):([0-5]\d)(?::[0-5]\d)?$")
_STRICT_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def to_minutes(time: str) -> int:
    m = _TIME_RE.match(time) if isinstance(time, str) else None
    if not m:
        raise InvalidTimeFormat(time)
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 24 or (hours == 24 and minutes != 0):
        raise InvalidTimeFormat(time)
    return hours * 60 + minutes


def to_time(minutes: int) -> str:
    if minutes < 0 or minutes > MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside a single day")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def is_valid_time(time: str) -> bool:
    return isinstance(time, str) and bool(_STRICT_TIME_RE.match(time))


def add_minutes(time: str, minutes: int) -> str:
    return to_time(to_minutes(time) + minutes)


def is_cross_midnight(start: str, end: str) -> bool:
    # Identical start and end is read as a full 24-hour span.
    return to_minutes(end) <= to_minutes(start)


def duration(start: str, end: str) -> int:
    """Minutes from *start* to *end*, wrapping past midnight when end <= start."""
    s, e = to_minutes(start), to_minutes(end)
    if e <= s:
        return MINUTES_PER_DAY - s + e
    return e - s


def overlaps(start_a: str | int, end_a: str | int, start_b: str | int, end_b: str | int) -> bool:
    sa, ea, sb, eb = (_as_minutes(v) for v in (start_a, end_a, start_b, end_b))
    return sa < eb and ea > sb


def _as_minutes(value: str | int) -> int:
    return value if isinstance(value, int) else to_minutes(value)


def snap(time: str, interval_minutes: int) -> str:
    """Round *time* to the nearest grid line (ties round up)."""
    if interval_minutes not in SNAP_INTERVALS:
        raise ValueError(f"Snap interval must be one of {SNAP_INTERVALS}, got {interval_minutes}")
    total = to_minutes(time)
    snapped = (total * 2 + interval_minutes) // (2 * interval_minutes) * interval_minutes
    return to_time(snapped % MINUTES_PER_DAY)


def format_duration(minutes: int) -> str:
    if minutes < 1:
        return "0min"
    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins}min"
    if mins == 0:
        return f"{hours}hr"
    return f"{hours}hr {mins}min"


# ---------------------------------------------------------------------------
# Duration policy
# ---------------------------------------------------------------------------


def duration_bounds(kind: DurationKind = DurationKind.GENERATED) -> tuple[int, int | None]:
    """(minimum, maximum) minutes for *kind*; maximum is None when unbounded."""
    if kind in (DurationKind.MANUAL, DurationKind.CALENDAR_EVENT):
        return MIN_DURATION_MINUTES, None
    return MIN_DURATION_MINUTES, MAX_DURATION_MINUTES


def clamp_duration(minutes: int, kind: DurationKind = DurationKind.GENERATED) -> int:
    lo, hi = duration_bounds(kind)
    minutes = max(lo, minutes)
    if hi is not None:
        minutes = min(hi, minutes)
    return minutes


def validate_duration(minutes: int, kind: DurationKind = DurationKind.GENERATED) -> int:
    lo, hi = duration_bounds(kind)
    if minutes < lo or (hi is not None and minutes > hi):
        raise DurationOutOfRange(minutes, lo, hi)
    return minutes


def split_cross_midnight(
    task_id: str,
    on: date,
    start: str,
    end: str,
) -> tuple[Placement, Placement]:
    """Split a wrapping range into a start-date segment and a next-date segment.

    The first segment is labelled as ending at 23:59 but accounts for every
    minute up to midnight, so the two durations always sum to ``duration()``.
    """
    if not is_cross_midnight(start, end):
        raise UnsplittableSegment(task_id, start, end, "range does not cross midnight")

    s, e = to_minutes(start), to_minutes(end)
    first_minutes = MINUTES_PER_DAY - s
    second_minutes = e
    for label, minutes in (("start-day", first_minutes), ("next-day", second_minutes)):
        if minutes < MIN_DURATION_MINUTES:
            raise UnsplittableSegment(
                task_id,
                start,
                end,
                f"{label} segment is {minutes}min, below the {MIN_DURATION_MINUTES}min minimum",
            )

    return (
        Placement(task_id, on, start, "23:59", first_minutes),
        Placement(task_id, on + timedelta(days=1), "00:00", end, second_minutes),
    )
