"""Typer CLI for timeblock."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from timeblock.analyzer import analyze_reschedule
from timeblock.capacity import effective_capacity, is_weekend, raw_capacity, remaining_today, validate_policy
from timeblock.detector import calculate_extension, detect_missed_tasks
from timeblock.models import (
    BusySlot,
    DateRange,
    DayCapacityPolicy,
    DurationKind,
    Placement,
    PlanScope,
    Priority,
    Task,
    Trigger,
)
from timeblock.persistence import DEFAULT_DB_FILE, Store
from timeblock.service import process_plan_rescheduling, schedule_plan
from timeblock.timemodel import MINUTES_PER_DAY, duration, format_duration, split_cross_midnight, to_minutes, to_time

app = typer.Typer(
    name="timeblock",
    help="Capacity-aware time-block scheduling with automatic re-planning of missed work.",
    no_args_is_help=True,
)
console = Console()

_db_path: str = DEFAULT_DB_FILE


@app.callback()
def main(
    db: Annotated[str, typer.Option("--db", envvar="TIMEBLOCK_DB", help="Path to the JSON database")] = DEFAULT_DB_FILE,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log scheduling decisions")] = False,
) -> None:
    global _db_path
    _db_path = db
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _get_store() -> Store:
    return Store(_db_path)


def _parse_as_of(value: str | None) -> datetime:
    if value is None:
        return datetime.now().replace(second=0, microsecond=0)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid timestamp '{value}'. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM.[/red]")
        raise typer.Exit(1)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date format '{value}'. Use YYYY-MM-DD.[/red]")
        raise typer.Exit(1)


def _fail(error: Exception) -> None:
    console.print(f"[red]{error}[/red]")
    raise typer.Exit(1)


def _require_plan(store: Store, plan_id: str):
    plan = store.get_plan(plan_id)
    if plan is None:
        console.print(f"[red]Plan {plan_id} not found. Run 'timeblock init' first.[/red]")
        raise typer.Exit(1)
    return plan


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    start: Annotated[str, typer.Option(help="Plan start date (YYYY-MM-DD)")],
    end: Annotated[str, typer.Option(help="Plan end date (YYYY-MM-DD)")],
    user: Annotated[str, typer.Option("--user", "-u", help="Owner of the plan")] = "me",
    workday_start: int = 9,
    workday_end: int = 17,
    lunch_start: int = 12,
    lunch_end: int = 13,
    weekends: Annotated[bool, typer.Option("--weekends/--no-weekends", help="Allow work on weekends")] = True,
    weekday_cap: Annotated[Optional[int], typer.Option(help="Max minutes per weekday")] = None,
    weekend_cap: Annotated[Optional[int], typer.Option(help="Max minutes per weekend day")] = None,
) -> None:
    """Create a plan and store the user's workday settings."""
    store = _get_store()
    start_date, end_date = _parse_date(start), _parse_date(end)
    if end_date < start_date:
        _fail(ValueError(f"Plan ends ({end_date}) before it starts ({start_date})"))

    workday = {
        "workday_start_hour": workday_start,
        "workday_end_hour": workday_end,
        "lunch_start_hour": lunch_start,
        "lunch_end_hour": lunch_end,
    }
    if weekday_cap is None and weekend_cap is None and weekends:
        store.set_preferences(user, {"workday": workday})
    else:
        policy = DayCapacityPolicy.from_dict(workday)
        policy.allow_weekends = weekends
        policy.weekday_max_minutes = weekday_cap
        policy.weekend_max_minutes = weekend_cap
        store.set_policy(user, policy)

    plan = store.add_plan(user, start_date, end_date)
    console.print(f"[green]Created plan {plan.id} for {user}: {start_date} to {end_date}[/green]")


@app.command()
def add(
    name: str,
    minutes: Annotated[int, typer.Option("--minutes", "-m", help="Duration in minutes")],
    plan: Annotated[Optional[str], typer.Option("--plan", "-p", help="Plan ID (omit for free mode)")] = None,
    user: Annotated[str, typer.Option("--user", "-u")] = "me",
    priority: Annotated[str, typer.Option(help="critical, high, medium or low")] = "medium",
    kind: Annotated[str, typer.Option(help="generated, manual or calendar_event")] = "generated",
    depends: Annotated[Optional[list[str]], typer.Option("--depends", help="Task IDs this depends on")] = None,
    on: Annotated[Optional[str], typer.Option("--date", help="Scheduled date (YYYY-MM-DD)")] = None,
    at: Annotated[Optional[str], typer.Option("--at", help="Scheduled start time (HH:MM)")] = None,
) -> None:
    """Add a task, optionally already placed on a date and time."""
    store = _get_store()
    if plan is not None:
        user = _require_plan(store, plan).user_id
    try:
        task_priority = Priority[priority.upper()]
        task_kind = DurationKind(kind)
    except (KeyError, ValueError):
        _fail(ValueError(f"Unknown priority '{priority}' or kind '{kind}'"))

    siblings = [rec for rec in store.load()["tasks"].values() if rec.get("plan_id") == plan]
    task = Task(
        id="",
        name=name,
        duration_minutes=minutes,
        priority=task_priority,
        origin_index=len(siblings),
        kind=task_kind,
        depends_on=tuple(depends or []),
    )

    placement = None
    if on is not None:
        start_time = at or "09:00"
        try:
            end_time = to_time((to_minutes(start_time) + minutes) % MINUTES_PER_DAY)
        except ValueError as e:
            _fail(e)
        placement = Placement("", _parse_date(on), start_time, end_time, minutes)

    tid = store.add_task(task, user, plan, placement)
    console.print(f"[green]Added '{name}' as {tid}[/green]")


@app.command()
def done(task_id: str) -> None:
    """Mark a task as completed."""
    store = _get_store()
    try:
        store.mark_done(task_id)
    except KeyError:
        console.print(f"[red]Task {task_id} not found.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Completed {task_id}.[/green]")


@app.command()
def schedule(
    plan: Annotated[str, typer.Option("--plan", "-p")],
    as_of: Annotated[Optional[str], typer.Option("--as-of", help="Pretend it is this time")] = None,
    apply: Annotated[bool, typer.Option("--apply", help="Save the new placements")] = False,
) -> None:
    """Pack the plan's open tasks into its remaining days."""
    store = _get_store()
    p = _require_plan(store, plan)
    now = _parse_as_of(as_of)
    try:
        outcome = schedule_plan(
            p,
            store.pending_tasks(p.id),
            store.get_capacity_policy(p.user_id),
            now,
            busy=store.list_busy_slots(p.user_id, DateRange(p.start_date, p.end_date)),
        )
    except ValueError as e:
        _fail(e)

    names = {tid: e.task.name for tid, e in store.tasks().items()}
    table = Table(title=f"Schedule for {p.id}")
    table.add_column("Date")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Duration", justify="right")
    for pl in sorted(outcome.placements, key=lambda pl: (pl.date, to_minutes(pl.start_time))):
        table.add_row(
            pl.date.strftime("%a %b %d"),
            pl.start_time,
            pl.end_time,
            pl.task_id,
            names.get(pl.task_id, ""),
            format_duration(pl.duration_minutes),
        )
    console.print(table)

    for diag in outcome.diagnostics:
        colour = "yellow" if diag.task_id not in outcome.unplaced else "red"
        console.print(f"[{colour}]{diag.task_id}: {diag.message}[/{colour}]")
    if outcome.unplaced:
        console.print(
            f"[red]{len(outcome.unplaced)} task(s) unplaced; "
            f"about {outcome.additional_days_needed} more day(s) needed.[/red]"
        )

    if apply:
        store.set_placements(outcome.placements)
        console.print(f"[green]Saved {len(outcome.placements)} placement(s).[/green]")


@app.command()
def missed(
    plan: Annotated[Optional[str], typer.Option("--plan", "-p", help="Plan ID (omit for free mode)")] = None,
    user: Annotated[str, typer.Option("--user", "-u")] = "me",
    as_of: Annotated[Optional[str], typer.Option("--as-of", help="Pretend it is this time")] = None,
) -> None:
    """List scheduled tasks whose time has passed without completion."""
    store = _get_store()
    if plan is not None:
        user = _require_plan(store, plan).user_id
    now = _parse_as_of(as_of)
    found = detect_missed_tasks(store, PlanScope(user, plan), now)
    if not found:
        console.print("[green]Nothing missed.[/green]")
        return

    table = Table(title="Missed tasks")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Scheduled")
    table.add_column("Days overdue", justify="right")
    for m in found:
        table.add_row(m.task_id, m.task_name, m.scheduled_date.isoformat(), str(m.days_overdue))
    console.print(table)
    console.print(f"[yellow]{len(found)} missed task(s) on {calculate_extension(found)} day(s)[/yellow]")


@app.command()
def reschedule(
    plan: Annotated[str, typer.Option("--plan", "-p")],
    as_of: Annotated[Optional[str], typer.Option("--as-of", help="Pretend it is this time")] = None,
    apply: Annotated[bool, typer.Option("--apply", help="Commit the re-plan and log it to history")] = False,
    time_shifts: Annotated[
        bool, typer.Option("--time-shifts/--dates-only", help="Include same-day start time moves")
    ] = True,
) -> None:
    """Extend a plan over missed days and redistribute the remaining work."""
    store = _get_store()
    p = _require_plan(store, plan)
    now = _parse_as_of(as_of)
    try:
        if apply:
            outcome = process_plan_rescheduling(
                p.id,
                now,
                store,
                store,
                store,
                calendar=store,
                trigger=Trigger.MANUAL,
                report_time_shifts=time_shifts,
            )
            result = outcome.result
        else:
            result = analyze_reschedule(
                PlanScope(p.user_id, p.id),
                now,
                store,
                store,
                calendar=store,
                trigger=Trigger.MANUAL,
                report_time_shifts=time_shifts,
            )
    except ValueError as e:
        _fail(e)

    if result is None:
        console.print("[green]Nothing to reschedule.[/green]")
        return

    console.print(f"[bold]{result.reason.message}[/bold]")
    console.print(f"End date: {p.end_date} -> {result.new_end_date} (+{result.days_extended} day(s))")
    table = Table(title=f"Adjustments for {p.id}")
    table.add_column("ID", style="bold")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Time")
    table.add_column("Duration", justify="right")
    for a in result.task_adjustments:
        table.add_row(
            a.task_id,
            a.old_date.isoformat(),
            a.new_date.isoformat(),
            f"{a.new_start_time}-{a.new_end_time}",
            format_duration(a.duration_minutes or 0),
        )
    console.print(table)
    if result.unplaced:
        console.print(f"[red]{len(result.unplaced)} tasks could not be rescheduled: {', '.join(result.unplaced)}[/red]")

    if apply:
        if outcome.applied:
            console.print("[green]Applied.[/green]")
        else:
            console.print("[red]Not applied; the plan changed since analysis or the moves would overlap other work.[/red]")
            raise typer.Exit(1)
        for warning in outcome.warnings:
            console.print(f"[yellow]Warning: {warning}[/yellow]")
    else:
        console.print("[dim]Preview only. Pass --apply to commit.[/dim]")


@app.command()
def capacity(
    user: Annotated[str, typer.Option("--user", "-u")] = "me",
    as_of: Annotated[Optional[str], typer.Option("--as-of", help="Pretend it is this time")] = None,
) -> None:
    """Show daily capacity and what is left of today."""
    store = _get_store()
    now = _parse_as_of(as_of)
    policy = store.get_capacity_policy(user)
    try:
        rem = remaining_today(validate_policy(policy), now)
    except ValueError as e:
        _fail(e)

    table = Table(title=f"Capacity for {user}")
    table.add_column("Day type")
    table.add_column("Window", justify="right")
    table.add_column("Usable", justify="right")
    for label, weekend in (("Weekday", False), ("Weekend", True)):
        if weekend and not policy.allow_weekends:
            table.add_row(label, "-", "off")
            continue
        table.add_row(
            label,
            format_duration(raw_capacity(policy, weekend)),
            format_duration(effective_capacity(policy, weekend)),
        )
    console.print(table)
    today = "weekend" if is_weekend(now.date()) else "weekday"
    console.print(f"Now {now:%a %H:%M} ({today}): {rem.state.value}, {format_duration(rem.remaining_minutes)} left")


@app.command()
def split(
    start: str,
    end: str,
    on: Annotated[str, typer.Option("--date", help="Date the range starts on (YYYY-MM-DD)")],
    task_id: Annotated[str, typer.Option("--task")] = "T-?",
) -> None:
    """Split a cross-midnight range into two same-day segments."""
    try:
        total = duration(start, end)
        first, second = split_cross_midnight(task_id, _parse_date(on), start, end)
    except ValueError as e:
        _fail(e)

    console.print(f"{start}-{end} spans {format_duration(total)}")
    for seg in (first, second):
        console.print(f"  {seg.date}  {seg.start_time}-{seg.end_time}  {format_duration(seg.duration_minutes)}")


@app.command()
def busy(
    on: Annotated[str, typer.Option("--date", help="Date (YYYY-MM-DD)")],
    start: Annotated[str, typer.Option("--from", help="Start time (HH:MM)")],
    end: Annotated[str, typer.Option("--to", help="End time (HH:MM)")],
    user: Annotated[str, typer.Option("--user", "-u")] = "me",
) -> None:
    """Block out a calendar range the scheduler must route around."""
    try:
        to_minutes(start), to_minutes(end)
    except ValueError as e:
        _fail(e)
    _get_store().add_busy_slot(user, BusySlot(_parse_date(on), start, end))
    console.print(f"[green]Blocked {on} {start}-{end} for {user}[/green]")


@app.command()
def history(plan: Annotated[Optional[str], typer.Option("--plan", "-p")] = None) -> None:
    """Show past re-plans."""
    entries = _get_store().history(plan)
    if not entries:
        console.print("No history yet.")
        return

    table = Table(title="Scheduling history")
    table.add_column("When")
    table.add_column("Plan", style="bold")
    table.add_column("Trigger")
    table.add_column("New end")
    table.add_column("+Days", justify="right")
    table.add_column("Moved", justify="right")
    table.add_column("Message")
    for e in entries:
        table.add_row(
            e.get("recordedAt", "-"),
            e["planId"],
            e["reason"]["trigger"],
            e["newEndDate"],
            str(e["daysExtended"]),
            str(len(e["taskAdjustments"])),
            e["reason"]["message"],
        )
    console.print(table)


if __name__ == "__main__":
    app()
