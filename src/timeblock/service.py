"""Host-side orchestration: analyze a plan, apply the result, log history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable

from timeblock.analyzer import RescheduleAnalyzer
from timeblock.detector import detect_missed_tasks
from timeblock.errors import NonFatalError, SchedulingError
from timeblock.models import (
    BusySlot,
    DateRange,
    DayCapacityPolicy,
    Plan,
    PlanScope,
    RescheduleResult,
    Task,
    Trigger,
)
from timeblock.ports import ApplyPort, CalendarPort, SettingsReadPort, TaskReadPort
from timeblock.scheduler import ScheduleOutcome, schedule_tasks

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutcome:
    applied: bool
    result: RescheduleResult | None = None
    warnings: list[NonFatalError] = field(default_factory=list)

    def unplaced_message(self) -> str | None:
        if self.result is None or not self.result.unplaced:
            return None
        return f"{len(self.result.unplaced)} tasks could not be rescheduled within the extended window"


def schedule_plan(
    plan: Plan,
    backlog: list[Task],
    policy: DayCapacityPolicy,
    as_of: datetime,
    busy: Iterable[BusySlot] = (),
) -> ScheduleOutcome:
    """Pack *backlog* into what is left of *plan*'s window as of *as_of*."""
    start = max(plan.start_date, as_of.date())
    if start > plan.end_date:
        raise SchedulingError(f"Plan {plan.id} ended on {plan.end_date}")
    return schedule_tasks(backlog, DateRange(start, plan.end_date), policy, busy=busy, now=as_of)


def check_plan_for_rescheduling(
    plan_id: str,
    as_of: date | datetime,
    tasks: TaskReadPort,
    settings: SettingsReadPort,
) -> bool:
    """True when an active, opted-in plan has missed work (cheap pre-check for cron)."""
    plan = settings.get_plan(plan_id)
    if plan is None or not plan.is_active:
        return False
    if not settings.is_smart_scheduling_enabled(plan.user_id):
        return False
    return bool(detect_missed_tasks(tasks, PlanScope(plan.user_id, plan.id), as_of))


def process_plan_rescheduling(
    plan_id: str,
    as_of: date | datetime,
    tasks: TaskReadPort,
    settings: SettingsReadPort,
    applier: ApplyPort,
    calendar: CalendarPort | None = None,
    trigger: Trigger = Trigger.AUTOMATIC,
    report_time_shifts: bool = True,
) -> ProcessOutcome:
    """Analyze *plan_id* and hand any result to *applier*.

    Same-date start shifts are applied by default, so a task moved onto a
    date never shares a slot with one already there.

    Analysis errors propagate. A rejected apply leaves nothing persisted, so a
    later pass recomputes from scratch. History logging is best effort and
    only ever produces warnings.
    """
    plan = settings.get_plan(plan_id)
    if plan is None or not plan.is_active:
        return ProcessOutcome(applied=False)

    analyzer = RescheduleAnalyzer(tasks, settings, calendar, report_time_shifts)
    result = analyzer.analyze(PlanScope(plan.user_id, plan.id), as_of, trigger)
    if result is None:
        return ProcessOutcome(applied=False)

    if not applier.apply_reschedule(result):
        logger.warning("Reschedule for plan %s was not applied", plan_id)
        return ProcessOutcome(applied=False, result=result)

    outcome = ProcessOutcome(applied=True, result=result)
    try:
        applier.record_history(result)
    except Exception as e:
        logger.warning("Could not record scheduling history for plan %s: %s", plan_id, e)
        outcome.warnings.append(NonFatalError("record_history", str(e)))

    logger.info("Processed rescheduling for plan %s: %s", plan_id, result.reason.message)
    return outcome
