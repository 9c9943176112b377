"""Capacity-bounded time-block packing across a window of days."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

import networkx as nx

from timeblock.capacity import capacity_for, days_needed, effective_capacity, is_weekend, validate_policy
from timeblock.errors import CapacityExceeded, DurationOutOfRange
from timeblock.models import BusySlot, DateRange, DayCapacityPolicy, DurationKind, Placement, Task
from timeblock.timemodel import MINUTES_PER_DAY, overlaps, to_minutes, to_time, validate_duration

logger = logging.getLogger(__name__)

DURATION_OUT_OF_RANGE = "duration_out_of_range"
OVERSIZED = "oversized"
CAPACITY_OVERFLOW = "capacity_overflow"
WINDOW_EXHAUSTED = "window_exhausted"

# Latest end an overflow placement may have, so its end label stays a valid HH:MM.
LAST_MINUTE = MINUTES_PER_DAY - 1


@dataclass(frozen=True)
class Diagnostic:
    """A structured note about a task the packer could not place normally."""

    kind: str
    task_id: str
    message: str
    date: date | None = None


@dataclass
class ScheduleOutcome:
    placements: list[Placement] = field(default_factory=list)
    unplaced: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    additional_days_needed: int = 0

    @property
    def total_minutes(self) -> int:
        return sum(p.duration_minutes for p in self.placements)

    @property
    def capacity_exceeded(self) -> CapacityExceeded | None:
        if not self.unplaced:
            return None
        return CapacityExceeded(self.unplaced)

    def raise_for_unplaced(self) -> None:
        error = self.capacity_exceeded
        if error is not None:
            raise error

    def minutes_by_date(self) -> dict[date, int]:
        totals: dict[date, int] = {}
        for p in self.placements:
            totals[p.date] = totals.get(p.date, 0) + p.duration_minutes
        return totals

    def placement_for(self, task_id: str) -> Placement | None:
        return next((p for p in self.placements if p.task_id == task_id), None)


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def build_dependency_graph(tasks: list[Task]) -> nx.DiGraph:
    """DAG of backlog tasks. Dependencies outside the backlog count as satisfied.

    Raises ValueError on duplicate ids or a dependency cycle.
    """
    G = nx.DiGraph()
    for task in tasks:
        if task.id in G:
            raise ValueError(f"Duplicate task id {task.id} in backlog")
        G.add_node(task.id, task=task)
    for task in tasks:
        for dep in task.depends_on:
            if dep in G:
                G.add_edge(dep, task.id)
    if not nx.is_directed_acyclic_graph(G):
        raise ValueError("Circular dependency detected")
    return G


def order_backlog(tasks: Iterable[Task]) -> list[Task]:
    """Urgent and earlier-declared work first, never ahead of its dependencies.

    Remaining ties go to the more complex task, then to the lower id.
    """
    G = build_dependency_graph(list(tasks))
    by_id = {tid: G.nodes[tid]["task"] for tid in G}
    order = nx.lexicographical_topological_sort(
        G, key=lambda tid: (
            int(by_id[tid].priority),
            by_id[tid].origin_index,
            -(by_id[tid].complexity_score or 0),
            tid,
        )
    )
    return [by_id[tid] for tid in order]


# ---------------------------------------------------------------------------
# Slot finding
# ---------------------------------------------------------------------------


def _busy_intervals(busy: Iterable[BusySlot | Placement]) -> dict[date, list[tuple[int, int]]]:
    by_date: dict[date, list[tuple[int, int]]] = {}
    for slot in busy:
        start, end = to_minutes(slot.start_time), to_minutes(slot.end_time)
        if end <= start:
            if end > 0:
                by_date.setdefault(slot.date + timedelta(days=1), []).append((0, end))
            end = MINUTES_PER_DAY
        by_date.setdefault(slot.date, []).append((start, end))
    return by_date


def find_slot(
    earliest: int,
    duration: int,
    occupied: list[tuple[int, int]],
    day_end: int,
    lunch: tuple[int, int],
) -> int | None:
    """Earliest start >= *earliest* for *duration* that avoids lunch and *occupied*."""
    lunch_start, lunch_end = lunch
    candidate = earliest
    while True:
        if lunch_start < lunch_end and overlaps(candidate, candidate + duration, lunch_start, lunch_end):
            candidate = lunch_end
        if candidate + duration > day_end:
            return None
        blocking = [end for start, end in occupied if overlaps(candidate, candidate + duration, start, end)]
        if not blocking:
            return candidate
        candidate = max(blocking)


# ---------------------------------------------------------------------------
# Packing
# ---------------------------------------------------------------------------


def _screen(
    ordered: list[Task],
    days: list[date],
    policy: DayCapacityPolicy,
    now: datetime | None,
    reasons: dict[str, Diagnostic],
) -> tuple[list[Task], set[str]]:
    """Drop tasks that can never be placed normally; return (packable, overflow ids)."""
    largest_day = max((capacity_for(d, policy) for d in days if now is None or d >= now.date()), default=0)
    packable: list[Task] = []
    overflow: set[str] = set()
    for task in ordered:
        try:
            validate_duration(task.duration_minutes, task.kind)
        except DurationOutOfRange as e:
            reasons[task.id] = Diagnostic(DURATION_OUT_OF_RANGE, task.id, str(e))
            continue
        if largest_day and task.duration_minutes > largest_day:
            if policy.allow_overflow and task.kind != DurationKind.GENERATED:
                overflow.add(task.id)
            else:
                reasons[task.id] = Diagnostic(
                    OVERSIZED,
                    task.id,
                    f"{task.duration_minutes}min exceeds the largest daily capacity ({largest_day}min)",
                )
                continue
        packable.append(task)
    return packable, overflow


def schedule_tasks(
    backlog: Iterable[Task],
    window: DateRange,
    policy: DayCapacityPolicy,
    busy: Iterable[BusySlot] = (),
    now: datetime | None = None,
    pinned: Iterable[Placement] = (),
) -> ScheduleOutcome:
    """Pack *backlog* into *window* day by day under *policy*.

    Tasks are taken from the front of the ordered backlog until the next one
    no longer fits the day's remaining capacity or free clock time, then the
    walk moves to the next eligible day. Tasks are never split across days.
    Anything left when the window runs out is reported in ``unplaced``.

    *pinned* placements belong to work that stays where it is. They block
    their clock time like busy slots and also count against their day's
    capacity.
    """
    validate_policy(policy)
    ordered = order_backlog(backlog)
    days = window.days()
    reasons: dict[str, Diagnostic] = {}
    packable, overflow = _screen(ordered, days, policy, now, reasons)

    outcome = ScheduleOutcome()
    pinned = list(pinned)
    busy_by_date = _busy_intervals([*busy, *pinned])
    reserved: dict[date, int] = {}
    for p in pinned:
        reserved[p.date] = reserved.get(p.date, 0) + p.duration_minutes
    queue = deque(packable)

    for day in days:
        if not queue:
            break
        capacity = capacity_for(day, policy, now)
        if capacity <= 0:
            continue

        weekend = is_weekend(day)
        day_start, day_end, lunch_start, lunch_end = policy.window(weekend)
        earliest = day_start
        if now is not None and day == now.date():
            earliest = max(day_start, now.hour * 60 + now.minute)
        occupied = sorted(busy_by_date.get(day, []))
        used = reserved.get(day, 0)

        while queue:
            task = queue[0]
            if task.id in overflow:
                if used:
                    break
                start = find_slot(earliest, task.duration_minutes, occupied, LAST_MINUTE, (0, 0))
                if start is None:
                    break
                outcome.diagnostics.append(
                    Diagnostic(
                        CAPACITY_OVERFLOW,
                        task.id,
                        f"{task.duration_minutes}min placed alone on a {capacity}min day",
                        day,
                    )
                )
                _place(outcome, task, day, start)
                queue.popleft()
                used = capacity
                break

            if used + task.duration_minutes > capacity:
                break
            start = find_slot(earliest, task.duration_minutes, occupied, day_end, (lunch_start, lunch_end))
            if start is None:
                break
            _place(outcome, task, day, start)
            occupied.append((start, start + task.duration_minutes))
            used += task.duration_minutes
            queue.popleft()

        logger.debug("Packed %s: %d/%d min used, %d task(s) waiting", day, used, capacity, len(queue))

    for task in queue:
        reasons[task.id] = Diagnostic(
            WINDOW_EXHAUSTED,
            task.id,
            f"No room for {task.duration_minutes}min between {window.start} and {window.end}",
        )

    outcome.unplaced = [t.id for t in ordered if t.id in reasons]
    outcome.diagnostics.extend(reasons[tid] for tid in outcome.unplaced)
    if outcome.unplaced:
        leftover = sum(t.duration_minutes for t in ordered if t.id in reasons)
        outcome.additional_days_needed = days_needed(leftover, 0, effective_capacity(policy))
        logger.warning(
            "%d task(s) could not be placed between %s and %s",
            len(outcome.unplaced),
            window.start,
            window.end,
        )
    return outcome


def _place(outcome: ScheduleOutcome, task: Task, day: date, start: int) -> None:
    outcome.placements.append(
        Placement(
            task_id=task.id,
            date=day,
            start_time=to_time(start),
            end_time=to_time(start + task.duration_minutes),
            duration_minutes=task.duration_minutes,
        )
    )
