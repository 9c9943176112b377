"""Re-planning after missed work: gate, detect, extend and redistribute."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from timeblock.detector import calculate_extension, detect_missed_tasks, missed_dates, occurrence_end
from timeblock.models import (
    DateRange,
    PlacementDelta,
    PlanScope,
    RescheduleReason,
    RescheduleResult,
    ScheduledTask,
    Trigger,
)
from timeblock.ports import CalendarPort, SettingsReadPort, TaskReadPort
from timeblock.scheduler import ScheduleOutcome, schedule_tasks

logger = logging.getLogger(__name__)


def reason_message(missed_day_count: int, incomplete: int) -> str:
    return f"Plan adjusted due to {missed_day_count} missed day(s) with {incomplete} incomplete tasks"


def placement_deltas(
    backlog: list[ScheduledTask],
    outcome: ScheduleOutcome,
    report_time_shifts: bool = False,
) -> list[PlacementDelta]:
    """Changes between current placements and the packer's result.

    Only date moves are reported unless *report_time_shifts* is set, in which
    case a same-date move to a different start time is reported too.
    """
    deltas: list[PlacementDelta] = []
    for entry in backlog:
        current = entry.placement
        new = outcome.placement_for(entry.task.id)
        if current is None or new is None:
            continue
        moved = new.date != current.date
        shifted = report_time_shifts and not moved and new.start_time != current.start_time
        if moved or shifted:
            deltas.append(
                PlacementDelta(
                    task_id=entry.task.id,
                    old_date=current.date,
                    new_date=new.date,
                    new_start_time=new.start_time,
                    new_end_time=new.end_time,
                    duration_minutes=new.duration_minutes,
                )
            )
    return deltas


class RescheduleAnalyzer:
    """Computes a RescheduleResult from persisted state; never writes anything."""

    def __init__(
        self,
        tasks: TaskReadPort,
        settings: SettingsReadPort,
        calendar: CalendarPort | None = None,
        report_time_shifts: bool = False,
    ):
        self.tasks = tasks
        self.settings = settings
        self.calendar = calendar
        self.report_time_shifts = report_time_shifts

    def analyze(
        self,
        scope: PlanScope,
        as_of: date | datetime,
        trigger: Trigger = Trigger.AUTOMATIC,
    ) -> RescheduleResult | None:
        # Gate
        if scope.is_free_mode:
            logger.debug("Free-mode scope for user %s has no plan horizon to extend", scope.user_id)
            return None
        if not self.settings.is_smart_scheduling_enabled(scope.user_id):
            logger.debug("Smart scheduling disabled for user %s", scope.user_id)
            return None
        plan = self.settings.get_plan(scope.plan_id)
        if plan is None or not plan.is_active:
            logger.debug("Plan %s missing or not active", scope.plan_id)
            return None

        # Detect
        missed = detect_missed_tasks(self.tasks, scope, as_of)
        if not missed:
            logger.debug("No missed tasks for plan %s", plan.id)
            return None

        # Extend & redistribute
        days_extended = calculate_extension(missed)
        new_end_date = plan.end_date + timedelta(days=days_extended)
        dates = missed_dates(missed)
        earliest_missed = dates[0]

        backlog = [
            entry for entry in self.tasks.list_active_tasks(scope, earliest_missed)
            if not entry.completed and entry.placement is not None and entry.placement.date > earliest_missed
        ]
        now = as_of if isinstance(as_of, datetime) else datetime.combine(as_of, time.min)
        policy = self.settings.get_capacity_policy(scope.user_id)
        window = DateRange(plan.start_date, max(new_end_date, plan.start_date))
        busy = self.calendar.list_busy_slots(scope.user_id, window) if self.calendar else []
        moving = {entry.task.id for entry in backlog}
        # Work left in place (later today on the earliest missed date) keeps its slot.
        pinned = [
            entry.placement for entry in self.tasks.list_scheduled_tasks(scope, window.end)
            if not entry.completed and entry.task.id not in moving and occurrence_end(entry) >= now
        ]
        outcome = schedule_tasks(
            [entry.task for entry in backlog],
            window,
            policy,
            busy=busy,
            now=now,
            pinned=pinned,
        )

        adjustments = placement_deltas(backlog, outcome, self.report_time_shifts)
        reason = RescheduleReason(
            missed_dates=tuple(dates),
            incomplete_tasks=len(missed),
            trigger=trigger,
            message=reason_message(len(dates), len(missed)),
        )
        logger.debug(
            "Plan %s: %d missed task(s), extending %d day(s), %d adjustment(s), %d unplaced",
            plan.id,
            len(missed),
            days_extended,
            len(adjustments),
            len(outcome.unplaced),
        )
        return RescheduleResult(
            plan_id=plan.id,
            new_end_date=new_end_date,
            days_extended=days_extended,
            task_adjustments=tuple(adjustments),
            reason=reason,
            unplaced=tuple(outcome.unplaced),
        )


def analyze_reschedule(
    scope: PlanScope,
    as_of: date | datetime,
    tasks: TaskReadPort,
    settings: SettingsReadPort,
    calendar: CalendarPort | None = None,
    trigger: Trigger = Trigger.AUTOMATIC,
    report_time_shifts: bool = False,
) -> RescheduleResult | None:
    """Full re-plan for *scope*, or None when there is nothing to do."""
    return RescheduleAnalyzer(tasks, settings, calendar, report_time_shifts).analyze(scope, as_of, trigger)
