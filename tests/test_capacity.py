from datetime import date, datetime

import pytest

from timeblock.capacity import (
    DayState,
    capacity_for,
    days_needed,
    effective_capacity,
    policy_from_preferences,
    raw_capacity,
    remaining_today,
    validate_policy,
)
from timeblock.errors import InvalidPolicy
from timeblock.models import DayCapacityPolicy

MONDAY = date(2026, 3, 2)
SATURDAY = date(2026, 3, 7)


def test_raw_and_effective_capacity():
    policy = DayCapacityPolicy()
    assert raw_capacity(policy) == 420  # 9-17 minus an hour of lunch
    assert effective_capacity(policy) == 420

    policy.weekday_max_minutes = 300
    assert effective_capacity(policy) == 300

    # A cap above the window never adds time.
    policy.weekday_max_minutes = 600
    assert effective_capacity(policy) == 420


@pytest.mark.parametrize(
    "hour,minute,state,remaining",
    [
        (8, 0, DayState.BEFORE_WORKDAY, 420),
        (10, 0, DayState.WORKING, 360),
        (12, 30, DayState.DURING_LUNCH, 240),
        (14, 0, DayState.WORKING, 180),
        (17, 0, DayState.AFTER_WORKDAY, 0),
    ],
)
def test_remaining_today_states(hour, minute, state, remaining):
    rem = remaining_today(DayCapacityPolicy(), datetime(2026, 3, 2, hour, minute))
    assert rem.state == state
    assert rem.remaining_minutes == remaining


def test_capacity_for_respects_weekends_and_now():
    policy = DayCapacityPolicy()
    assert capacity_for(SATURDAY, policy) == 0
    policy.allow_weekends = True
    assert capacity_for(SATURDAY, policy) == 420

    now = datetime(2026, 3, 3, 14, 0)
    assert capacity_for(MONDAY, policy, now) == 0  # in the past
    assert capacity_for(date(2026, 3, 3), policy, now) == 180
    assert capacity_for(date(2026, 3, 4), policy, now) == 420


def test_days_needed():
    assert days_needed(100, 120, 300) == 0
    assert days_needed(600, 120, 300) == 2
    with pytest.raises(InvalidPolicy):
        days_needed(500, 0, 0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"workday_start_hour": 17, "workday_end_hour": 9},
        {"lunch_start_hour": 18, "lunch_end_hour": 19},
        {"lunch_start_hour": 13, "lunch_end_hour": 12},
        {"workday_end_hour": 25},
        {"weekday_max_minutes": 0},
    ],
)
def test_validate_policy_rejects_inconsistent(overrides):
    with pytest.raises(InvalidPolicy):
        validate_policy(DayCapacityPolicy(**overrides))


def test_validate_policy_checks_weekend_only_when_allowed():
    policy = DayCapacityPolicy(weekend_start_hour=18, weekend_end_hour=10)
    assert validate_policy(policy) is policy
    policy.allow_weekends = True
    with pytest.raises(InvalidPolicy):
        validate_policy(policy)


def test_policy_from_preferences_defaults():
    policy = policy_from_preferences({})
    assert policy.allow_weekends
    assert policy.weekday_max_minutes == 252  # 60% of 420
    assert (policy.weekend_start_hour, policy.weekend_end_hour) == (9, 19)
    assert policy.weekend_max_minutes == 480
    assert effective_capacity(policy, weekend=False) == 252


def test_policy_from_preferences_nested_and_flat_keys():
    flat = policy_from_preferences({"workday_start_hour": 8, "workday_end_hour": 16})
    assert flat.workday_start_hour == 8
    assert flat.weekday_max_minutes == 252

    nested = policy_from_preferences(
        {"workday": {"workday_start_hour": 10, "workday_end_hour": 14, "lunch_start_hour": 12, "lunch_end_hour": 12}}
    )
    assert nested.weekday_max_minutes == 144
    assert nested.weekend_max_minutes == 360
