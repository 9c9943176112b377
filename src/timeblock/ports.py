"""Collaborator interfaces the host application supplies to the core."""

from __future__ import annotations

from datetime import date
from typing import Protocol

from timeblock.models import (
    BusySlot,
    DateRange,
    DayCapacityPolicy,
    Plan,
    PlanScope,
    RescheduleResult,
    ScheduledTask,
)


class TaskReadPort(Protocol):
    def list_scheduled_tasks(self, scope: PlanScope, through: date) -> list[ScheduledTask]:
        """Tasks in *scope* with a placement on or before *through*."""
        ...

    def list_active_tasks(self, scope: PlanScope, after: date) -> list[ScheduledTask]:
        """Incomplete tasks in *scope* placed strictly after *after*."""
        ...


class SettingsReadPort(Protocol):
    def get_plan(self, plan_id: str) -> Plan | None: ...

    def is_smart_scheduling_enabled(self, user_id: str) -> bool: ...

    def get_capacity_policy(self, user_id: str) -> DayCapacityPolicy: ...


class ApplyPort(Protocol):
    def apply_reschedule(self, result: RescheduleResult) -> bool:
        """Commit every adjustment in *result* or none of them."""
        ...

    def record_history(self, result: RescheduleResult) -> None:
        """Append *result* to the plan's scheduling history."""
        ...


class CalendarPort(Protocol):
    def list_busy_slots(self, user_id: str, window: DateRange) -> list[BusySlot]:
        """Externally booked clock ranges the packer must route around."""
        ...
