"""Detection of scheduled work whose time has passed without completion."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from timeblock.models import MissedTask, PlanScope, ScheduledTask
from timeblock.ports import TaskReadPort
from timeblock.timemodel import is_cross_midnight, to_minutes


def _as_datetime(as_of: date | datetime) -> datetime:
    if isinstance(as_of, datetime):
        return as_of
    return datetime.combine(as_of, time.min)


def occurrence_end(entry: ScheduledTask) -> datetime:
    """Wall-clock end of a placed task; cross-midnight ranges end the next day."""
    placement = entry.placement
    if placement is None:
        raise ValueError(f"Task {entry.task.id} has no placement")
    end_minutes = to_minutes(placement.end_time)
    end = datetime.combine(placement.date, time.min) + timedelta(minutes=end_minutes)
    if is_cross_midnight(placement.start_time, placement.end_time):
        end += timedelta(days=1)
    return end


def find_missed(entries: list[ScheduledTask], as_of: date | datetime) -> list[MissedTask]:
    """Pure filter behind detect_missed_tasks; never mutates *entries*."""
    now = _as_datetime(as_of)
    missed = [
        e for e in entries
        if e.placement is not None and not e.completed and occurrence_end(e) < now
    ]
    missed.sort(key=lambda e: (e.placement.date, to_minutes(e.placement.start_time), e.task.origin_index, e.task.id))
    return [
        MissedTask(
            task_id=e.task.id,
            scheduled_date=e.placement.date,
            days_overdue=(now.date() - e.placement.date).days,
            task_name=e.task.name,
        )
        for e in missed
    ]


def detect_missed_tasks(
    tasks: TaskReadPort,
    scope: PlanScope,
    as_of: date | datetime,
) -> list[MissedTask]:
    """Incomplete tasks in *scope* whose scheduled end is before *as_of*.

    Read-only: safe to call on every cron tick without double counting.
    """
    entries = tasks.list_scheduled_tasks(scope, _as_datetime(as_of).date())
    return find_missed(entries, as_of)


def missed_dates(missed: list[MissedTask]) -> list[date]:
    return sorted({m.scheduled_date for m in missed})


def calculate_extension(missed: list[MissedTask]) -> int:
    """One extra day of runway per distinct missed date, not per missed task."""
    return len(missed_dates(missed))
