"""MCP server for timeblock: exposes scheduling and re-planning tools to AI assistants."""

from __future__ import annotations

import json
import os
from datetime import date, datetime

from mcp.server.fastmcp import FastMCP

from timeblock.analyzer import analyze_reschedule
from timeblock.capacity import effective_capacity, remaining_today, validate_policy
from timeblock.detector import calculate_extension, detect_missed_tasks
from timeblock.models import DateRange, DurationKind, Placement, PlanScope, Priority, Task, Trigger
from timeblock.persistence import DEFAULT_DB_FILE, Store
from timeblock.service import process_plan_rescheduling, schedule_plan
from timeblock.timemodel import MINUTES_PER_DAY, split_cross_midnight, to_minutes, to_time

mcp = FastMCP(
    "timeblock",
    instructions="""\
timeblock packs tasks into daily time blocks and re-plans when work is missed. \
Durations are in minutes and clock times are HH:MM (24-hour).

Key concepts:
- **Plan**: a date window owned by a user. Tasks in a plan are placed on dates \
inside it. Tasks without a plan are "free mode" and are never auto-rescheduled.
- **Capacity**: each day offers the workday window minus lunch, capped by the \
user's per-day maximum. Weekends may be off.
- **Missed task**: a placed, incomplete task whose scheduled end is in the past.
- **Reschedule**: extends the plan by one day per distinct missed date and moves \
later tasks forward so no day exceeds capacity. preview_reschedule only computes; \
apply_reschedule commits and logs history.

Typical workflow:
1. create_plan, then add_task for each piece of work
2. get_schedule to pack open tasks (save=True stores the placements)
3. complete_task as work gets done
4. get_missed_tasks / preview_reschedule to see slippage
5. apply_reschedule to commit the re-plan\
""",
)


def _get_store() -> Store:
    return Store(os.environ.get("TIMEBLOCK_DB", DEFAULT_DB_FILE))


def _as_of(value: str | None) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now().replace(second=0, microsecond=0)


def _placement_to_dict(p: Placement, names: dict[str, str]) -> dict:
    d = p.to_dict()
    d["name"] = names.get(p.task_id, "")
    return d


@mcp.tool()
def create_plan(start_date: str, end_date: str, user_id: str = "me") -> str:
    """Create a plan spanning start_date..end_date (YYYY-MM-DD, inclusive)."""
    try:
        plan = _get_store().add_plan(user_id, date.fromisoformat(start_date), date.fromisoformat(end_date))
    except ValueError as e:
        return f"Error: {e}"
    return f"Created plan {plan.id} ({plan.start_date} to {plan.end_date})"


@mcp.tool()
def add_task(
    name: str,
    duration_minutes: int,
    plan_id: str | None = None,
    user_id: str = "me",
    priority: str = "medium",
    kind: str = "generated",
    depends_on: list[str] | None = None,
    scheduled_date: str | None = None,
    start_time: str = "09:00",
) -> str:
    """Add a task.

    Args:
        name: Task name/title
        duration_minutes: Estimated duration in minutes
        plan_id: Plan to add it to (omit for free mode)
        user_id: Owner, ignored when plan_id is given
        priority: critical, high, medium or low
        kind: generated, manual or calendar_event
        depends_on: Task IDs that must be placed first
        scheduled_date: Place it on this date right away (YYYY-MM-DD)
        start_time: Start time when scheduled_date is given (HH:MM)
    """
    store = _get_store()
    if plan_id is not None:
        plan = store.get_plan(plan_id)
        if plan is None:
            return f"Error: plan {plan_id} not found."
        user_id = plan.user_id
    try:
        task = Task(
            id="",
            name=name,
            duration_minutes=duration_minutes,
            priority=Priority[priority.upper()],
            origin_index=sum(1 for rec in store.load()["tasks"].values() if rec.get("plan_id") == plan_id),
            kind=DurationKind(kind),
            depends_on=tuple(depends_on or []),
        )
        placement = None
        if scheduled_date:
            end_time = to_time((to_minutes(start_time) + duration_minutes) % MINUTES_PER_DAY)
            placement = Placement("", date.fromisoformat(scheduled_date), start_time, end_time, duration_minutes)
    except (KeyError, ValueError) as e:
        return f"Error: {e}"
    tid = store.add_task(task, user_id, plan_id, placement)
    return f"Added '{name}' as {tid}"


@mcp.tool()
def complete_task(task_id: str) -> str:
    """Mark a task as completed."""
    try:
        _get_store().mark_done(task_id)
    except KeyError:
        return f"Error: task {task_id} not found."
    return f"Completed {task_id}"


@mcp.tool()
def get_schedule(plan_id: str, as_of: str | None = None, save: bool = False) -> str:
    """Pack the plan's open tasks into its remaining days.

    Returns placements, unplaced task IDs and diagnostics as JSON. With
    save=True the placements are stored.
    """
    store = _get_store()
    plan = store.get_plan(plan_id)
    if plan is None:
        return f"Error: plan {plan_id} not found."
    try:
        outcome = schedule_plan(
            plan,
            store.pending_tasks(plan.id),
            store.get_capacity_policy(plan.user_id),
            _as_of(as_of),
            busy=store.list_busy_slots(plan.user_id, DateRange(plan.start_date, plan.end_date)),
        )
    except ValueError as e:
        return f"Error: {e}"
    if save:
        store.set_placements(outcome.placements)

    names = {tid: e.task.name for tid, e in store.tasks().items()}
    return json.dumps(
        {
            "placements": [_placement_to_dict(p, names) for p in outcome.placements],
            "unplaced": outcome.unplaced,
            "diagnostics": [
                {"kind": d.kind, "taskId": d.task_id, "message": d.message} for d in outcome.diagnostics
            ],
            "additionalDaysNeeded": outcome.additional_days_needed,
            "saved": save,
        },
        indent=2,
    )


@mcp.tool()
def get_missed_tasks(plan_id: str | None = None, user_id: str = "me", as_of: str | None = None) -> str:
    """List placed, incomplete tasks whose scheduled end has passed."""
    store = _get_store()
    if plan_id is not None:
        plan = store.get_plan(plan_id)
        if plan is None:
            return f"Error: plan {plan_id} not found."
        user_id = plan.user_id
    found = detect_missed_tasks(store, PlanScope(user_id, plan_id), _as_of(as_of))
    return json.dumps(
        {"missed": [m.to_dict() for m in found], "extensionDays": calculate_extension(found)},
        indent=2,
    )


@mcp.tool()
def preview_reschedule(plan_id: str, as_of: str | None = None, include_time_shifts: bool = True) -> str:
    """Compute (without saving) the re-plan for missed work in a plan."""
    store = _get_store()
    plan = store.get_plan(plan_id)
    if plan is None:
        return f"Error: plan {plan_id} not found."
    try:
        result = analyze_reschedule(
            PlanScope(plan.user_id, plan.id),
            _as_of(as_of),
            store,
            store,
            calendar=store,
            trigger=Trigger.MANUAL,
            report_time_shifts=include_time_shifts,
        )
    except ValueError as e:
        return f"Error: {e}"
    if result is None:
        return "Nothing to reschedule."
    return json.dumps(result.to_dict(), indent=2)


@mcp.tool()
def apply_reschedule(plan_id: str, as_of: str | None = None, include_time_shifts: bool = True) -> str:
    """Re-plan missed work in a plan, commit it and log it to history.

    With include_time_shifts off only date moves are written, and the apply is
    refused if that would leave two tasks in the same slot.
    """
    store = _get_store()
    try:
        outcome = process_plan_rescheduling(
            plan_id,
            _as_of(as_of),
            store,
            store,
            store,
            calendar=store,
            trigger=Trigger.MANUAL,
            report_time_shifts=include_time_shifts,
        )
    except ValueError as e:
        return f"Error: {e}"
    if outcome.result is None:
        return "Nothing to reschedule."
    return json.dumps(
        {
            "applied": outcome.applied,
            "result": outcome.result.to_dict(),
            "warnings": [str(w) for w in outcome.warnings],
        },
        indent=2,
    )


@mcp.tool()
def get_capacity(user_id: str = "me", as_of: str | None = None) -> str:
    """Daily capacity in minutes and what is left of today."""
    store = _get_store()
    now = _as_of(as_of)
    try:
        policy = validate_policy(store.get_capacity_policy(user_id))
    except ValueError as e:
        return f"Error: {e}"
    rem = remaining_today(policy, now)
    return json.dumps(
        {
            "weekdayMinutes": effective_capacity(policy, weekend=False),
            "weekendMinutes": effective_capacity(policy, weekend=True) if policy.allow_weekends else 0,
            "today": {"state": rem.state.value, "remainingMinutes": rem.remaining_minutes},
            "policy": policy.to_dict(),
        },
        indent=2,
    )


@mcp.tool()
def split_task(task_id: str, scheduled_date: str, start_time: str, end_time: str) -> str:
    """Split a range that crosses midnight into a same-day and a next-day segment."""
    try:
        first, second = split_cross_midnight(task_id, date.fromisoformat(scheduled_date), start_time, end_time)
    except ValueError as e:
        return f"Error: {e}"
    return json.dumps([first.to_dict(), second.to_dict()], indent=2)


@mcp.tool()
def get_history(plan_id: str | None = None) -> str:
    """Past re-plans, oldest first."""
    return json.dumps(_get_store().history(plan_id), indent=2)


def main():
    """Entry point for the MCP server."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
