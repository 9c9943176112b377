from datetime import date

import pytest

from timeblock.errors import DurationOutOfRange, InvalidTimeFormat, UnsplittableSegment
from timeblock.models import DurationKind
from timeblock.timemodel import (
    add_minutes,
    clamp_duration,
    duration,
    format_duration,
    is_cross_midnight,
    is_valid_time,
    overlaps,
    snap,
    split_cross_midnight,
    to_minutes,
    to_time,
    validate_duration,
)


def test_to_minutes_and_back():
    assert to_minutes("09:30") == 570
    assert to_minutes("00:00") == 0
    assert to_minutes("24:00") == 1440
    assert to_minutes("09:30:45") == 570  # seconds dropped
    assert to_time(570) == "09:30"
    assert to_time(1440) == "24:00"


@pytest.mark.parametrize("bad", ["25:00", "24:30", "9:5", "noon", "", "12:60"])
def test_to_minutes_rejects_malformed(bad):
    with pytest.raises(InvalidTimeFormat):
        to_minutes(bad)


def test_add_minutes_stays_within_the_day():
    assert add_minutes("09:30", 45) == "10:15"
    with pytest.raises(ValueError):
        add_minutes("23:30", 45)


def test_to_time_rejects_out_of_day():
    with pytest.raises(ValueError):
        to_time(-1)
    with pytest.raises(ValueError):
        to_time(1441)


def test_is_valid_time_is_strict():
    assert is_valid_time("23:59")
    assert not is_valid_time("24:00")
    assert not is_valid_time("7pm")


def test_duration_wraps_midnight():
    assert duration("09:00", "10:30") == 90
    assert duration("23:30", "00:15") == 45
    assert is_cross_midnight("23:30", "00:15")
    # Identical endpoints are a full day, not zero.
    assert duration("09:00", "09:00") == 1440


def test_adjacent_blocks_do_not_overlap():
    assert not overlaps("09:00", "09:30", "09:30", "10:00")
    assert overlaps("09:00", "10:00", "09:30", "10:30")
    assert overlaps(540, 600, 550, 560)


def test_snap():
    assert snap("09:07", 15) == "09:00"
    assert snap("09:08", 15) == "09:15"
    assert snap("09:15", 30) == "09:30"  # ties round up
    assert snap("23:50", 30) == "00:00"
    with pytest.raises(ValueError):
        snap("09:00", 10)


def test_format_duration():
    assert format_duration(0) == "0min"
    assert format_duration(45) == "45min"
    assert format_duration(60) == "1hr"
    assert format_duration(90) == "1hr 30min"


def test_duration_policy_by_kind():
    assert validate_duration(360) == 360
    with pytest.raises(DurationOutOfRange):
        validate_duration(480)
    with pytest.raises(DurationOutOfRange):
        validate_duration(4, DurationKind.MANUAL)
    assert validate_duration(480, DurationKind.MANUAL) == 480
    assert validate_duration(600, DurationKind.CALENDAR_EVENT) == 600

    assert clamp_duration(400) == 360
    assert clamp_duration(2) == 5
    assert clamp_duration(400, DurationKind.MANUAL) == 400


def test_split_cross_midnight():
    first, second = split_cross_midnight("T-1", date(2026, 3, 2), "23:30", "00:15")

    assert (first.date, first.start_time, first.end_time) == (date(2026, 3, 2), "23:30", "23:59")
    assert (second.date, second.start_time, second.end_time) == (date(2026, 3, 3), "00:00", "00:15")
    assert first.duration_minutes == 30
    assert second.duration_minutes == 15
    assert first.duration_minutes + second.duration_minutes == duration("23:30", "00:15")


def test_split_rejects_same_day_range():
    with pytest.raises(UnsplittableSegment):
        split_cross_midnight("T-1", date(2026, 3, 2), "22:00", "23:00")


def test_split_rejects_tiny_segment():
    with pytest.raises(UnsplittableSegment) as exc:
        split_cross_midnight("T-1", date(2026, 3, 2), "23:58", "01:00")
    assert exc.value.task_id == "T-1"
