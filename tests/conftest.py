from datetime import date

import pytest

from timeblock.models import (
    BusySlot,
    DateRange,
    DayCapacityPolicy,
    Placement,
    Plan,
    PlanScope,
    Priority,
    RescheduleResult,
    ScheduledTask,
    Task,
)
from timeblock.timemodel import MINUTES_PER_DAY, to_minutes, to_time


class FakeHost:
    """In-memory stand-in for every port the core reads from or writes to."""

    def __init__(self, plan: Plan | None = None, policy: DayCapacityPolicy | None = None):
        self.plans = {plan.id: plan} if plan else {}
        self.policy = policy or DayCapacityPolicy()
        self.smart_scheduling = True
        self.entries: list[tuple[str | None, ScheduledTask]] = []
        self.busy: list[BusySlot] = []
        self.applied: list[RescheduleResult] = []
        self.history: list[RescheduleResult] = []
        self.apply_ok = True
        self.history_error: Exception | None = None

    def add(
        self,
        task_id: str,
        minutes: int = 60,
        on: date | None = None,
        start: str = "09:00",
        completed: bool = False,
        priority: Priority = Priority.MEDIUM,
        plan_id: str | None = "P-1",
    ) -> Task:
        task = Task(task_id, f"Task {task_id}", minutes, priority=priority, origin_index=len(self.entries))
        placement = (
            Placement(task_id, on, start, to_time((to_minutes(start) + minutes) % MINUTES_PER_DAY), minutes)
            if on
            else None
        )
        self.entries.append((plan_id, ScheduledTask(task, placement, completed)))
        return task

    def _scope(self, scope: PlanScope) -> list[ScheduledTask]:
        return [e for pid, e in self.entries if pid == scope.plan_id]

    # TaskReadPort
    def list_scheduled_tasks(self, scope, through):
        return [e for e in self._scope(scope) if e.placement and e.placement.date <= through]

    def list_active_tasks(self, scope, after):
        return [e for e in self._scope(scope) if e.placement and not e.completed and e.placement.date > after]

    # SettingsReadPort
    def get_plan(self, plan_id):
        return self.plans.get(plan_id)

    def is_smart_scheduling_enabled(self, user_id):
        return self.smart_scheduling

    def get_capacity_policy(self, user_id):
        return self.policy

    # CalendarPort
    def list_busy_slots(self, user_id, window: DateRange):
        return [s for s in self.busy if window.start <= s.date <= window.end]

    # ApplyPort
    def apply_reschedule(self, result):
        if self.apply_ok:
            self.applied.append(result)
        return self.apply_ok

    def record_history(self, result):
        if self.history_error is not None:
            raise self.history_error
        self.history.append(result)


MONDAY = date(2026, 3, 2)


@pytest.fixture
def plan():
    return Plan("P-1", "u-1", MONDAY, date(2026, 3, 6))


@pytest.fixture
def host(plan):
    return FakeHost(plan)
