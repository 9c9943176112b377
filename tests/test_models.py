from datetime import date

import pytest

from timeblock.models import (
    DateRange,
    DayCapacityPolicy,
    DurationKind,
    PlacementDelta,
    Plan,
    Priority,
    RescheduleReason,
    RescheduleResult,
    Task,
    Trigger,
)


def test_task_serialization():
    t = Task(
        id="T-1",
        name="Draft chapter",
        duration_minutes=90,
        priority=Priority.HIGH,
        complexity_score=7,
        origin_index=4,
        kind=DurationKind.MANUAL,
        depends_on=("T-0",),
    )
    d = t.to_dict()
    assert d["priority"] == 2
    assert d["kind"] == "manual"
    assert d["depends_on"] == ["T-0"]

    assert Task.from_dict("T-1", d) == t


def test_task_defaults_from_sparse_dict():
    t = Task.from_dict("T-9", {"name": "Quick", "duration_minutes": "15"})
    assert t.duration_minutes == 15
    assert t.priority == Priority.MEDIUM
    assert t.kind == DurationKind.GENERATED
    assert t.complexity_score is None


def test_date_range():
    r = DateRange(date(2026, 3, 2), date(2026, 3, 4))
    assert len(r) == 3
    assert r.days()[-1] == date(2026, 3, 4)
    with pytest.raises(ValueError):
        DateRange(date(2026, 3, 4), date(2026, 3, 2))


def test_policy_weekend_window_falls_back_to_weekday():
    policy = DayCapacityPolicy(weekend_start_hour=10, weekend_end_hour=14)
    assert policy.window(False) == (540, 1020, 720, 780)
    assert policy.window(True) == (600, 840, 720, 780)
    assert DayCapacityPolicy.from_dict(policy.to_dict()) == policy


def test_plan_serialization():
    plan = Plan("P-1", "u-1", date(2026, 3, 2), date(2026, 3, 6), original_end_date=date(2026, 3, 5))
    assert Plan.from_dict("P-1", plan.to_dict()) == plan
    assert plan.is_active


def test_reschedule_result_wire_keys():
    result = RescheduleResult(
        plan_id="P-1",
        new_end_date=date(2026, 3, 8),
        days_extended=2,
        task_adjustments=(
            PlacementDelta("T-3", date(2026, 3, 3), date(2026, 3, 4), "09:00", "10:00", 60),
        ),
        reason=RescheduleReason(
            missed_dates=(date(2026, 3, 2), date(2026, 3, 3)),
            incomplete_tasks=3,
            trigger=Trigger.AUTOMATIC,
            message="Plan adjusted due to 2 missed day(s) with 3 incomplete tasks",
        ),
    )
    d = result.to_dict()
    assert d["newEndDate"] == "2026-03-08"
    assert d["taskAdjustments"][0] == {
        "taskId": "T-3",
        "oldDate": "2026-03-03",
        "newDate": "2026-03-04",
        "newStartTime": "09:00",
        "newEndTime": "10:00",
        "duration": 60,
    }
    assert d["reason"]["missedDates"] == ["2026-03-02", "2026-03-03"]
    assert d["reason"]["trigger"] == "automatic"
    assert RescheduleResult.from_dict(d) == result
