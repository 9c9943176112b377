"""JSON file persistence for plans, tasks, user settings and history."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import date, datetime
from pathlib import Path

from timeblock.capacity import policy_from_preferences
from timeblock.models import (
    BusySlot,
    DateRange,
    DayCapacityPolicy,
    Placement,
    Plan,
    PlanScope,
    PlanStatus,
    RescheduleResult,
    ScheduledTask,
    Task,
)
from timeblock.timemodel import duration, overlaps, to_minutes

logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = "timeblock.json"

_plan_locks: dict[tuple[str, str], threading.Lock] = {}
_plan_locks_guard = threading.Lock()


def _plan_lock(db_path: Path, plan_id: str) -> threading.Lock:
    key = (str(db_path.resolve()), plan_id)
    with _plan_locks_guard:
        return _plan_locks.setdefault(key, threading.Lock())


def _empty() -> dict:
    return {"users": {}, "plans": {}, "tasks": {}, "busy": {}, "history": []}


class Store:
    """Reads and writes the scheduling database (JSON file).

    Implements every port the core needs, so one Store can be handed to the
    analyzer for reading and to the service for applying.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_FILE):
        self.db_path = Path(db_path)

    # -- raw file access ---------------------------------------------------

    def load(self) -> dict:
        if not self.db_path.exists():
            return _empty()
        raw = json.loads(self.db_path.read_text())
        for key, value in _empty().items():
            raw.setdefault(key, value)
        return raw

    def save(self, raw: dict) -> None:
        """Persist *raw* by writing a sibling temp file and renaming it over the DB."""
        fd, tmp = tempfile.mkstemp(dir=self.db_path.parent, prefix=f".{self.db_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump(raw, fh, indent=4)
            os.replace(tmp, self.db_path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def generate_id(self, existing: dict, prefix: str = "T") -> str:
        """Generate the next <prefix>-N id."""
        numbers = [int(k.split("-")[1]) for k in existing if k.startswith(f"{prefix}-")]
        return f"{prefix}-{max(numbers, default=0) + 1}"

    # -- host-side writes --------------------------------------------------

    def add_plan(self, user_id: str, start: date, end: date) -> Plan:
        raw = self.load()
        plan = Plan(self.generate_id(raw["plans"], "P"), user_id, start, end)
        raw["plans"][plan.id] = plan.to_dict()
        raw["users"].setdefault(user_id, {"smart_scheduling": True})
        self.save(raw)
        return plan

    def set_plan_status(self, plan_id: str, status: PlanStatus) -> None:
        raw = self.load()
        if plan_id not in raw["plans"]:
            raise KeyError(plan_id)
        raw["plans"][plan_id]["status"] = status.value
        self.save(raw)

    def add_task(
        self,
        task: Task,
        user_id: str,
        plan_id: str | None = None,
        placement: Placement | None = None,
    ) -> str:
        """Store *task*; an empty id is replaced with the next T-N."""
        raw = self.load()
        task_id = task.id or self.generate_id(raw["tasks"])
        record = task.to_dict()
        record.update(
            user_id=user_id,
            plan_id=plan_id,
            placement=placement.to_dict() | {"task_id": task_id} if placement else None,
            completed=False,
        )
        raw["tasks"][task_id] = record
        self.save(raw)
        return task_id

    def set_placements(self, placements: list[Placement]) -> None:
        raw = self.load()
        for placement in placements:
            raw["tasks"][placement.task_id]["placement"] = placement.to_dict()
        self.save(raw)

    def pending_tasks(self, plan_id: str) -> list[Task]:
        """Incomplete tasks of *plan_id*, placed or not."""
        return [
            Task.from_dict(tid, rec)
            for tid, rec in self.load()["tasks"].items()
            if rec.get("plan_id") == plan_id and not rec.get("completed", False)
        ]

    def mark_done(self, task_id: str, done: bool = True) -> None:
        raw = self.load()
        if task_id not in raw["tasks"]:
            raise KeyError(task_id)
        raw["tasks"][task_id]["completed"] = done
        self.save(raw)

    def set_smart_scheduling(self, user_id: str, enabled: bool) -> None:
        raw = self.load()
        raw["users"].setdefault(user_id, {})["smart_scheduling"] = enabled
        self.save(raw)

    def set_policy(self, user_id: str, policy: DayCapacityPolicy) -> None:
        raw = self.load()
        raw["users"].setdefault(user_id, {"smart_scheduling": True})["policy"] = policy.to_dict()
        self.save(raw)

    def set_preferences(self, user_id: str, preferences: dict) -> None:
        raw = self.load()
        raw["users"].setdefault(user_id, {"smart_scheduling": True})["preferences"] = preferences
        self.save(raw)

    def add_busy_slot(self, user_id: str, slot: BusySlot) -> None:
        raw = self.load()
        raw["busy"].setdefault(user_id, []).append(
            {"date": slot.date.isoformat(), "start_time": slot.start_time, "end_time": slot.end_time}
        )
        self.save(raw)

    def tasks(self) -> dict[str, ScheduledTask]:
        return {tid: _scheduled(tid, rec) for tid, rec in self.load()["tasks"].items()}

    def history(self, plan_id: str | None = None) -> list[dict]:
        entries = self.load()["history"]
        if plan_id is None:
            return entries
        return [e for e in entries if e["planId"] == plan_id]

    # -- TaskReadPort ------------------------------------------------------

    def _in_scope(self, scope: PlanScope) -> list[ScheduledTask]:
        return [
            _scheduled(tid, rec)
            for tid, rec in self.load()["tasks"].items()
            if rec.get("user_id") == scope.user_id and rec.get("plan_id") == scope.plan_id
        ]

    def list_scheduled_tasks(self, scope: PlanScope, through: date) -> list[ScheduledTask]:
        return [e for e in self._in_scope(scope) if e.placement is not None and e.placement.date <= through]

    def list_active_tasks(self, scope: PlanScope, after: date) -> list[ScheduledTask]:
        return [
            e for e in self._in_scope(scope)
            if not e.completed and e.placement is not None and e.placement.date > after
        ]

    # -- SettingsReadPort --------------------------------------------------

    def get_plan(self, plan_id: str) -> Plan | None:
        data = self.load()["plans"].get(plan_id)
        return Plan.from_dict(plan_id, data) if data else None

    def is_smart_scheduling_enabled(self, user_id: str) -> bool:
        return bool(self.load()["users"].get(user_id, {}).get("smart_scheduling", False))

    def get_capacity_policy(self, user_id: str) -> DayCapacityPolicy:
        user = self.load()["users"].get(user_id, {})
        if "policy" in user:
            return DayCapacityPolicy.from_dict(user["policy"])
        return policy_from_preferences(user.get("preferences", {}))

    # -- CalendarPort ------------------------------------------------------

    def list_busy_slots(self, user_id: str, window: DateRange) -> list[BusySlot]:
        slots = [
            BusySlot(date.fromisoformat(s["date"]), s["start_time"], s["end_time"])
            for s in self.load()["busy"].get(user_id, [])
        ]
        return [s for s in slots if window.start <= s.date <= window.end]

    # -- ApplyPort ---------------------------------------------------------

    def apply_reschedule(self, result: RescheduleResult) -> bool:
        """Apply every adjustment and the new end date in one write, or nothing.

        Returns False without writing when the plan is gone or inactive, when
        any adjusted task no longer sits on the date the result was computed
        from (another pass got there first), or when a moved task would overlap
        another open task of the plan. An unplaced task whose old slot a moved
        task takes is left unscheduled instead.
        """
        with _plan_lock(self.db_path, result.plan_id):
            raw = self.load()
            plan_data = raw["plans"].get(result.plan_id)
            if plan_data is None or plan_data.get("status") != PlanStatus.ACTIVE.value:
                logger.warning("Plan %s is missing or inactive; skipping apply", result.plan_id)
                return False

            for delta in result.task_adjustments:
                record = raw["tasks"].get(delta.task_id)
                current = record.get("placement") if record else None
                if current is None or current["date"] != delta.old_date.isoformat():
                    logger.warning("Task %s moved since analysis; skipping apply", delta.task_id)
                    return False

            for delta in result.task_adjustments:
                current = raw["tasks"][delta.task_id]["placement"]
                current["date"] = delta.new_date.isoformat()
                if delta.new_start_time is not None:
                    current["start_time"] = delta.new_start_time
                if delta.new_end_time is not None:
                    current["end_time"] = delta.new_end_time
                if delta.duration_minutes is not None:
                    current["duration_minutes"] = delta.duration_minutes

            unplaced = set(result.unplaced)
            for delta in result.task_adjustments:
                mine = raw["tasks"][delta.task_id]["placement"]
                for other_id, other in raw["tasks"].items():
                    theirs = other.get("placement")
                    if (
                        other_id == delta.task_id
                        or theirs is None
                        or other.get("completed", False)
                        or other.get("plan_id") != result.plan_id
                        or theirs["date"] != mine["date"]
                        or not overlaps(*_interval(mine), *_interval(theirs))
                    ):
                        continue
                    if other_id in unplaced:
                        other["placement"] = None
                        logger.info("Task %s gave up its slot to %s and is now unscheduled", other_id, delta.task_id)
                    else:
                        logger.warning(
                            "Task %s would overlap %s on %s; skipping apply", delta.task_id, other_id, mine["date"]
                        )
                        return False

            if plan_data.get("original_end_date") is None:
                plan_data["original_end_date"] = plan_data["end_date"]
            plan_data["end_date"] = result.new_end_date.isoformat()
            self.save(raw)
        logger.info(
            "Applied %d adjustment(s) to plan %s, new end %s",
            len(result.task_adjustments),
            result.plan_id,
            result.new_end_date,
        )
        return True

    def record_history(self, result: RescheduleResult) -> None:
        with _plan_lock(self.db_path, result.plan_id):
            raw = self.load()
            entry = result.to_dict()
            entry["recordedAt"] = datetime.now().isoformat(timespec="seconds")
            raw["history"].append(entry)
            self.save(raw)


def _interval(placement: dict) -> tuple[int, int]:
    start = to_minutes(placement["start_time"])
    return start, start + duration(placement["start_time"], placement["end_time"])


def _scheduled(task_id: str, record: dict) -> ScheduledTask:
    placement = record.get("placement")
    return ScheduledTask(
        task=Task.from_dict(task_id, record),
        placement=Placement.from_dict(placement | {"task_id": task_id}) if placement else None,
        completed=bool(record.get("completed", False)),
    )
