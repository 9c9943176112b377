"""Error taxonomy for the scheduling core.

Every error is a ``ValueError`` so hosts that already guard scheduling calls
with ``except ValueError`` keep working.
"""

from __future__ import annotations

from dataclasses import dataclass


class SchedulingError(ValueError):
    """Base class for scheduling failures."""


class InvalidTimeFormat(SchedulingError):
    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid time '{value}': expected HH:MM (24-hour)")


class DurationOutOfRange(SchedulingError):
    """A duration falls outside the policy bounds for its task kind."""

    def __init__(self, minutes: int, minimum: int, maximum: int | None):
        self.minutes = minutes
        self.minimum = minimum
        self.maximum = maximum
        upper = f"{maximum}" if maximum is not None else "unbounded"
        super().__init__(f"Duration {minutes}min outside allowed range [{minimum}, {upper}]")


class UnsplittableSegment(SchedulingError):
    """A cross-midnight split would yield a segment under the minimum duration."""

    def __init__(self, task_id: str, start_time: str, end_time: str, reason: str):
        self.task_id = task_id
        self.start_time = start_time
        self.end_time = end_time
        super().__init__(f"Cannot split {task_id} ({start_time}-{end_time}): {reason}")


class CapacityExceeded(SchedulingError):
    """The date window cannot absorb the backlog at the given caps."""

    def __init__(self, unplaced: list[str] | tuple[str, ...]):
        self.unplaced = tuple(unplaced)
        super().__init__(
            f"{len(self.unplaced)} task(s) could not be placed within the window: "
            + ", ".join(self.unplaced)
        )


class InvalidPolicy(SchedulingError):
    """The capacity policy is inconsistent; raised before any packing work."""


@dataclass(frozen=True)
class NonFatalError:
    """A best-effort step that failed without affecting the primary outcome."""

    step: str
    message: str

    def __str__(self) -> str:
        return f"{self.step}: {self.message}"
