from datetime import date, datetime

import pytest

from timeblock.models import (
    BusySlot,
    DateRange,
    DayCapacityPolicy,
    Placement,
    PlanScope,
    PlanStatus,
    Task,
)
from timeblock.persistence import Store
from timeblock.service import process_plan_rescheduling

MON, TUE, WED, THU = (date(2026, 3, d) for d in (2, 3, 4, 5))
WED_MORNING = datetime(2026, 3, 4, 8, 0)


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "timeblock.json")


def _placed(store, plan_id, on, start="09:00", minutes=60, name="Work"):
    end = f"{int(start[:2]) + minutes // 60:02d}:{start[3:]}"
    return store.add_task(
        Task("", name, minutes),
        "u-1",
        plan_id,
        Placement("", on, start, end, minutes),
    )


def test_empty_store_loads_defaults(store):
    assert store.load() == {"users": {}, "plans": {}, "tasks": {}, "busy": {}, "history": []}
    assert store.get_plan("P-1") is None
    assert not store.is_smart_scheduling_enabled("u-1")


def test_ids_and_round_trip(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    assert plan.id == "P-1"
    assert store.add_plan("u-1", MON, MON).id == "P-2"

    tid = _placed(store, plan.id, TUE)
    assert tid == "T-1"
    assert _placed(store, plan.id, WED) == "T-2"

    entry = store.tasks()["T-1"]
    assert entry.task.name == "Work"
    assert entry.placement == Placement("T-1", TUE, "09:00", "10:00", 60)
    assert not entry.completed
    assert store.get_plan("P-1") == plan
    assert store.is_smart_scheduling_enabled("u-1")


def test_scope_filters(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    _placed(store, plan.id, MON)
    _placed(store, plan.id, WED)
    _placed(store, None, MON)
    store.mark_done("T-2")

    in_plan = store.list_scheduled_tasks(PlanScope("u-1", plan.id), TUE)
    assert [e.task.id for e in in_plan] == ["T-1"]
    free = store.list_scheduled_tasks(PlanScope("u-1"), TUE)
    assert [e.task.id for e in free] == ["T-3"]
    assert store.list_active_tasks(PlanScope("u-1", plan.id), MON) == []
    assert [t.id for t in store.pending_tasks(plan.id)] == ["T-1"]


def test_policy_falls_back_to_preferences(store):
    assert store.get_capacity_policy("u-1").weekday_max_minutes == 252

    store.set_policy("u-1", DayCapacityPolicy(weekday_max_minutes=300))
    assert store.get_capacity_policy("u-1").weekday_max_minutes == 300


def test_busy_slots_in_window(store):
    store.add_busy_slot("u-1", BusySlot(MON, "09:00", "10:00"))
    store.add_busy_slot("u-1", BusySlot(THU, "09:00", "10:00"))
    assert store.list_busy_slots("u-1", DateRange(MON, WED)) == [BusySlot(MON, "09:00", "10:00")]


def test_end_to_end_reschedule(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    _placed(store, plan.id, MON)
    _placed(store, plan.id, TUE)
    _placed(store, plan.id, THU)

    outcome = process_plan_rescheduling(plan.id, WED_MORNING, store, store, store, calendar=store)

    assert outcome.applied
    updated = store.get_plan(plan.id)
    assert updated.end_date == date(2026, 3, 8)
    assert updated.original_end_date == date(2026, 3, 6)
    assert store.tasks()["T-2"].placement.date == WED
    assert store.tasks()["T-3"].placement.date == WED
    assert store.tasks()["T-3"].placement.start_time == "10:00"
    assert [h["planId"] for h in store.history(plan.id)] == ["P-1"]

    # A second apply of the same result is stale and changes nothing.
    assert not store.apply_reschedule(outcome.result)
    assert store.get_plan(plan.id).end_date == date(2026, 3, 8)


def test_moved_task_never_shares_a_slot(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    for day in (MON, TUE, WED):
        _placed(store, plan.id, day)

    outcome = process_plan_rescheduling(plan.id, WED_MORNING, store, store, store)

    assert outcome.applied
    on_wed = sorted(
        (e.placement.start_time, e.placement.end_time, tid)
        for tid, e in store.tasks().items()
        if e.placement.date == WED
    )
    assert on_wed == [("09:00", "10:00", "T-2"), ("10:00", "11:00", "T-3")]


def test_dates_only_apply_refused_when_it_would_overlap(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    for day in (MON, TUE, WED):
        _placed(store, plan.id, day)

    outcome = process_plan_rescheduling(plan.id, WED_MORNING, store, store, store, report_time_shifts=False)

    assert not outcome.applied
    assert store.tasks()["T-2"].placement.date == TUE
    assert store.get_plan(plan.id).end_date == date(2026, 3, 6)
    assert store.history(plan.id) == []


def test_unplaced_task_gives_up_a_slot_taken_by_a_moved_task(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    store.set_policy("u-1", DayCapacityPolicy(weekday_max_minutes=60))
    for day in (MON, TUE, WED, THU, date(2026, 3, 6)):
        _placed(store, plan.id, day)

    outcome = process_plan_rescheduling(plan.id, WED_MORNING, store, store, store)

    assert outcome.applied
    assert outcome.result.unplaced == ("T-5",)
    tasks = store.tasks()
    assert tasks["T-4"].placement.date == date(2026, 3, 6)
    assert tasks["T-5"].placement is None
    assert "T-5" in [t.id for t in store.pending_tasks(plan.id)]


def test_apply_refuses_inactive_plan(store):
    plan = store.add_plan("u-1", MON, date(2026, 3, 6))
    _placed(store, plan.id, MON)
    _placed(store, plan.id, THU)
    outcome = process_plan_rescheduling(plan.id, WED_MORNING, store, store, store)
    assert outcome.applied

    store.set_plan_status(plan.id, PlanStatus.PAUSED)
    assert process_plan_rescheduling(plan.id, WED_MORNING, store, store, store).result is None
    assert not store.apply_reschedule(outcome.result)


def test_save_leaves_no_temp_files(store, tmp_path):
    store.add_plan("u-1", MON, TUE)
    store.set_smart_scheduling("u-1", False)
    assert [p.name for p in tmp_path.iterdir()] == ["timeblock.json"]
    assert not store.is_smart_scheduling_enabled("u-1")
