"""Daily labor capacity: workday windows, lunch breaks and explicit caps."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, time

from timeblock.errors import InvalidPolicy
from timeblock.models import DayCapacityPolicy


class DayState(enum.StrEnum):
    BEFORE_WORKDAY = "before_workday"
    WORKING = "working"
    DURING_LUNCH = "during_lunch"
    AFTER_WORKDAY = "after_workday"


@dataclass(frozen=True)
class RemainingTime:
    """How much of today's window is still usable at a given clock time."""

    remaining_minutes: int
    state: DayState
    workday_start_minutes: int
    workday_end_minutes: int
    lunch_start_minutes: int
    lunch_end_minutes: int

    @property
    def is_before_workday(self) -> bool:
        return self.state == DayState.BEFORE_WORKDAY

    @property
    def is_after_workday(self) -> bool:
        return self.state == DayState.AFTER_WORKDAY

    @property
    def is_during_lunch(self) -> bool:
        return self.state == DayState.DURING_LUNCH


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def validate_policy(policy: DayCapacityPolicy) -> DayCapacityPolicy:
    """Raise InvalidPolicy if the policy cannot be packed against."""
    _check_window(policy, weekend=False)
    if policy.allow_weekends:
        _check_window(policy, weekend=True)
    for label, cap in (
        ("weekday_max_minutes", policy.weekday_max_minutes),
        ("weekend_max_minutes", policy.weekend_max_minutes),
    ):
        if cap is not None and cap <= 0:
            raise InvalidPolicy(f"{label} must be positive, got {cap}")
    return policy


def _check_window(policy: DayCapacityPolicy, weekend: bool) -> None:
    label = "weekend" if weekend else "workday"
    if not weekend:
        hours = (
            policy.workday_start_hour,
            policy.workday_end_hour,
            policy.lunch_start_hour,
            policy.lunch_end_hour,
        )
        start_minute = policy.workday_start_minute
    else:
        hours = tuple(
            h for h in (
                policy.weekend_start_hour,
                policy.weekend_end_hour,
                policy.weekend_lunch_start_hour,
                policy.weekend_lunch_end_hour,
            ) if h is not None
        )
        start_minute = policy.weekend_start_minute or 0
    for h in hours:
        if h < 0 or h > 23:
            raise InvalidPolicy(f"Invalid {label} hour: {h}")
    if start_minute < 0 or start_minute > 59:
        raise InvalidPolicy(f"Invalid {label} start minute: {start_minute}")

    day_start, day_end, lunch_start, lunch_end = policy.window(weekend)
    if day_start >= day_end:
        raise InvalidPolicy(f"{label.capitalize()} start must be before its end")
    if lunch_start > lunch_end:
        raise InvalidPolicy(f"{label.capitalize()} lunch start must not be after lunch end")
    if lunch_end > lunch_start and (lunch_start < day_start or lunch_end > day_end):
        raise InvalidPolicy(f"{label.capitalize()} lunch window must lie inside the {label} window")
    if raw_capacity(policy, weekend) <= 0:
        raise InvalidPolicy(f"{label.capitalize()} window leaves no working time")


def raw_capacity(policy: DayCapacityPolicy, weekend: bool = False) -> int:
    """Workday minutes minus the part of lunch that falls inside the workday."""
    day_start, day_end, lunch_start, lunch_end = policy.window(weekend)
    lunch = max(0, min(day_end, lunch_end) - max(day_start, lunch_start))
    return (day_end - day_start) - lunch


def effective_capacity(policy: DayCapacityPolicy, weekend: bool = False) -> int:
    """Raw window capacity throttled by the explicit per-day cap."""
    raw = raw_capacity(policy, weekend)
    cap = policy.max_minutes(weekend)
    if cap is not None and cap > 0:
        return min(raw, cap)
    return raw


def remaining_today(
    policy: DayCapacityPolicy,
    now: datetime | time,
    weekend: bool | None = None,
) -> RemainingTime:
    if weekend is None:
        weekend = is_weekend(now.date()) if isinstance(now, datetime) else False
    day_start, day_end, lunch_start, lunch_end = policy.window(weekend)
    current = now.hour * 60 + now.minute

    if current < day_start:
        state = DayState.BEFORE_WORKDAY
        remaining = raw_capacity(policy, weekend)
    elif current >= day_end:
        state = DayState.AFTER_WORKDAY
        remaining = 0
    elif current < lunch_start:
        state = DayState.WORKING
        remaining = (lunch_start - current) + (day_end - lunch_end)
    elif current >= lunch_end:
        state = DayState.WORKING
        remaining = day_end - current
    else:
        state = DayState.DURING_LUNCH
        remaining = day_end - lunch_end

    return RemainingTime(
        remaining_minutes=remaining,
        state=state,
        workday_start_minutes=day_start,
        workday_end_minutes=day_end,
        lunch_start_minutes=lunch_start,
        lunch_end_minutes=lunch_end,
    )


def capacity_for(day: date, policy: DayCapacityPolicy, now: datetime | None = None) -> int:
    """Minutes the packer may place on *day*."""
    weekend = is_weekend(day)
    if weekend and not policy.allow_weekends:
        return 0
    if now is not None:
        if day < now.date():
            return 0
        if day == now.date():
            return min(effective_capacity(policy, weekend), remaining_today(policy, now, weekend).remaining_minutes)
    return effective_capacity(policy, weekend)


def days_needed(total_minutes: int, remaining_today_minutes: int, daily_cap: int) -> int:
    """Additional days required beyond today to absorb *total_minutes*."""
    if total_minutes <= remaining_today_minutes:
        return 0
    if daily_cap <= 0:
        raise InvalidPolicy(f"Daily capacity must be positive, got {daily_cap}")
    return math.ceil((total_minutes - remaining_today_minutes) / daily_cap)


def policy_from_preferences(prefs: dict) -> DayCapacityPolicy:
    """Build the redistribution policy from stored user preferences.

    Workday keys may sit under ``prefs["workday"]`` or at the top level. Caps
    are derived so a single day is never filled to its raw window: weekdays
    get 60% of the workday, weekends a slightly longer window capped at 8h.
    """
    workday = prefs.get("workday") or {}

    def pick(key: str, default: int) -> int:
        value = workday.get(key, prefs.get(key))
        return default if value is None else int(value)

    start_hour = pick("workday_start_hour", 9)
    end_hour = pick("workday_end_hour", 17)
    lunch_start = pick("lunch_start_hour", 12)
    lunch_end = pick("lunch_end_hour", 13)

    lunch_minutes = max(0, lunch_end - lunch_start) * 60
    base_minutes = max(60, (end_hour - start_hour) * 60 - lunch_minutes)
    weekday_max = max(120, round(base_minutes * 0.6))

    weekend_start = max(start_hour, 9)
    weekend_end = min(end_hour + 2, 20)
    if weekend_end <= weekend_start:
        weekend_start, weekend_end = start_hour, end_hour
    weekend_window = max(60, (weekend_end - weekend_start) * 60 - lunch_minutes)
    weekend_max = min(480, max(180, weekend_window))

    return DayCapacityPolicy(
        workday_start_hour=start_hour,
        workday_end_hour=end_hour,
        lunch_start_hour=lunch_start,
        lunch_end_hour=lunch_end,
        allow_weekends=True,
        weekend_start_hour=weekend_start,
        weekend_end_hour=weekend_end,
        weekend_lunch_start_hour=lunch_start,
        weekend_lunch_end_hour=lunch_end,
        weekday_max_minutes=weekday_max,
        weekend_max_minutes=weekend_max,
    )
