"""Task, placement and plan records shared by the scheduling core."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, timedelta


class Priority(enum.IntEnum):
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class DurationKind(enum.StrEnum):
    GENERATED = "generated"
    MANUAL = "manual"
    CALENDAR_EVENT = "calendar_event"


class PlanStatus(enum.StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Trigger(enum.StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass(frozen=True)
class Task:
    """A discrete unit of work awaiting placement."""

    id: str
    name: str
    duration_minutes: int
    priority: Priority = Priority.MEDIUM
    complexity_score: int | None = None
    origin_index: int = 0
    kind: DurationKind = DurationKind.GENERATED
    depends_on: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        d = {
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "priority": int(self.priority),
            "origin_index": self.origin_index,
            "kind": self.kind.value,
            "depends_on": list(self.depends_on),
        }
        if self.complexity_score is not None:
            d["complexity_score"] = self.complexity_score
        return d

    @classmethod
    def from_dict(cls, task_id: str, d: dict) -> Task:
        return cls(
            id=task_id,
            name=d["name"],
            duration_minutes=int(d["duration_minutes"]),
            priority=Priority(d.get("priority", 3)),
            complexity_score=d.get("complexity_score"),
            origin_index=d.get("origin_index", 0),
            kind=DurationKind(d.get("kind", "generated")),
            depends_on=tuple(d.get("depends_on", [])),
        )


@dataclass(frozen=True)
class Placement:
    """A task assigned to a date and clock range (HH:MM)."""

    task_id: str
    date: date
    start_time: str
    end_time: str
    duration_minutes: int

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Placement:
        return cls(
            task_id=d["task_id"],
            date=date.fromisoformat(d["date"]),
            start_time=d["start_time"],
            end_time=d["end_time"],
            duration_minutes=int(d["duration_minutes"]),
        )


@dataclass(frozen=True)
class BusySlot:
    """A clock range already taken on a date, e.g. a calendar event."""

    date: date
    start_time: str
    end_time: str


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar dates."""

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Date range ends ({self.end}) before it starts ({self.start})")

    def days(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range((self.end - self.start).days + 1)]

    def __len__(self) -> int:
        return (self.end - self.start).days + 1


@dataclass
class DayCapacityPolicy:
    """Per-run workday configuration and daily minute caps."""

    workday_start_hour: int = 9
    workday_start_minute: int = 0
    workday_end_hour: int = 17
    lunch_start_hour: int = 12
    lunch_end_hour: int = 13
    allow_weekends: bool = False
    weekend_start_hour: int | None = None
    weekend_start_minute: int | None = None
    weekend_end_hour: int | None = None
    weekend_lunch_start_hour: int | None = None
    weekend_lunch_end_hour: int | None = None
    weekday_max_minutes: int | None = None
    weekend_max_minutes: int | None = None
    allow_overflow: bool = False

    def window(self, weekend: bool) -> tuple[int, int, int, int]:
        """(day start, day end, lunch start, lunch end) in minutes since midnight."""
        if not weekend:
            return (
                self.workday_start_hour * 60 + self.workday_start_minute,
                self.workday_end_hour * 60,
                self.lunch_start_hour * 60,
                self.lunch_end_hour * 60,
            )
        start_hour = _first(self.weekend_start_hour, self.workday_start_hour)
        start_minute = _first(self.weekend_start_minute, self.workday_start_minute)
        return (
            start_hour * 60 + start_minute,
            _first(self.weekend_end_hour, self.workday_end_hour) * 60,
            _first(self.weekend_lunch_start_hour, self.lunch_start_hour) * 60,
            _first(self.weekend_lunch_end_hour, self.lunch_end_hour) * 60,
        )

    def max_minutes(self, weekend: bool) -> int | None:
        return self.weekend_max_minutes if weekend else self.weekday_max_minutes

    def to_dict(self) -> dict:
        return {
            "workday_start_hour": self.workday_start_hour,
            "workday_start_minute": self.workday_start_minute,
            "workday_end_hour": self.workday_end_hour,
            "lunch_start_hour": self.lunch_start_hour,
            "lunch_end_hour": self.lunch_end_hour,
            "allow_weekends": self.allow_weekends,
            "weekend_start_hour": self.weekend_start_hour,
            "weekend_start_minute": self.weekend_start_minute,
            "weekend_end_hour": self.weekend_end_hour,
            "weekend_lunch_start_hour": self.weekend_lunch_start_hour,
            "weekend_lunch_end_hour": self.weekend_lunch_end_hour,
            "weekday_max_minutes": self.weekday_max_minutes,
            "weekend_max_minutes": self.weekend_max_minutes,
            "allow_overflow": self.allow_overflow,
        }

    @classmethod
    def from_dict(cls, d: dict) -> DayCapacityPolicy:
        return cls(
            workday_start_hour=d.get("workday_start_hour", 9),
            workday_start_minute=d.get("workday_start_minute", 0),
            workday_end_hour=d.get("workday_end_hour", 17),
            lunch_start_hour=d.get("lunch_start_hour", 12),
            lunch_end_hour=d.get("lunch_end_hour", 13),
            allow_weekends=d.get("allow_weekends", False),
            weekend_start_hour=d.get("weekend_start_hour"),
            weekend_start_minute=d.get("weekend_start_minute"),
            weekend_end_hour=d.get("weekend_end_hour"),
            weekend_lunch_start_hour=d.get("weekend_lunch_start_hour"),
            weekend_lunch_end_hour=d.get("weekend_lunch_end_hour"),
            weekday_max_minutes=d.get("weekday_max_minutes"),
            weekend_max_minutes=d.get("weekend_max_minutes"),
            allow_overflow=d.get("allow_overflow", False),
        )


def _first(value: int | None, fallback: int) -> int:
    return fallback if value is None else value


@dataclass(frozen=True)
class ScheduledTask:
    """A task annotated with its current placement, as read from the host store."""

    task: Task
    placement: Placement | None = None
    completed: bool = False

    @property
    def scheduled_date(self) -> date | None:
        return self.placement.date if self.placement else None


@dataclass(frozen=True)
class Plan:
    id: str
    user_id: str
    start_date: date
    end_date: date
    status: PlanStatus = PlanStatus.ACTIVE
    original_end_date: date | None = None

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "original_end_date": self.original_end_date.isoformat() if self.original_end_date else None,
        }

    @classmethod
    def from_dict(cls, plan_id: str, d: dict) -> Plan:
        original = d.get("original_end_date")
        return cls(
            id=plan_id,
            user_id=d["user_id"],
            start_date=date.fromisoformat(d["start_date"]),
            end_date=date.fromisoformat(d["end_date"]),
            status=PlanStatus(d.get("status", "active")),
            original_end_date=date.fromisoformat(original) if original else None,
        )


@dataclass(frozen=True)
class PlanScope:
    """Which tasks a pass looks at: one plan, or the user's free-mode tasks."""

    user_id: str
    plan_id: str | None = None

    @property
    def is_free_mode(self) -> bool:
        return self.plan_id is None


@dataclass(frozen=True)
class MissedTask:
    task_id: str
    scheduled_date: date
    days_overdue: int
    task_name: str = ""

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "taskName": self.task_name,
            "scheduledDate": self.scheduled_date.isoformat(),
            "daysOverdue": self.days_overdue,
        }


@dataclass(frozen=True)
class PlacementDelta:
    task_id: str
    old_date: date
    new_date: date
    new_start_time: str | None = None
    new_end_time: str | None = None
    duration_minutes: int | None = None

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "oldDate": self.old_date.isoformat(),
            "newDate": self.new_date.isoformat(),
            "newStartTime": self.new_start_time,
            "newEndTime": self.new_end_time,
            "duration": self.duration_minutes,
        }

    @classmethod
    def from_dict(cls, d: dict) -> PlacementDelta:
        return cls(
            task_id=d["taskId"],
            old_date=date.fromisoformat(d["oldDate"]),
            new_date=date.fromisoformat(d["newDate"]),
            new_start_time=d.get("newStartTime"),
            new_end_time=d.get("newEndTime"),
            duration_minutes=d.get("duration"),
        )


@dataclass(frozen=True)
class RescheduleReason:
    missed_dates: tuple[date, ...]
    incomplete_tasks: int
    trigger: Trigger
    message: str

    def to_dict(self) -> dict:
        return {
            "missedDates": [d.isoformat() for d in self.missed_dates],
            "incompleteTasks": self.incomplete_tasks,
            "trigger": self.trigger.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, d: dict) -> RescheduleReason:
        return cls(
            missed_dates=tuple(date.fromisoformat(x) for x in d["missedDates"]),
            incomplete_tasks=d["incompleteTasks"],
            trigger=Trigger(d["trigger"]),
            message=d["message"],
        )


@dataclass(frozen=True)
class RescheduleResult:
    """The analyzer's proposed re-plan. Built once per pass and never mutated."""

    plan_id: str
    new_end_date: date
    days_extended: int
    task_adjustments: tuple[PlacementDelta, ...]
    reason: RescheduleReason
    unplaced: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "planId": self.plan_id,
            "newEndDate": self.new_end_date.isoformat(),
            "daysExtended": self.days_extended,
            "taskAdjustments": [a.to_dict() for a in self.task_adjustments],
            "reason": self.reason.to_dict(),
            "unplaced": list(self.unplaced),
        }

    @classmethod
    def from_dict(cls, d: dict) -> RescheduleResult:
        return cls(
            plan_id=d["planId"],
            new_end_date=date.fromisoformat(d["newEndDate"]),
            days_extended=d["daysExtended"],
            task_adjustments=tuple(PlacementDelta.from_dict(a) for a in d["taskAdjustments"]),
            reason=RescheduleReason.from_dict(d["reason"]),
            unplaced=tuple(d.get("unplaced", [])),
        )
