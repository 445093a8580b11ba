"""Wall-clock time parsing and weekday helpers."""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta

from shiftengine.errors import ValidationFailed

TIME_REGEX = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")

# 0 = Sunday, matching the stored day_of_week convention
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

# pandas weekly anchors, indexed the same way as DAY_NAMES
WEEKLY_ANCHORS = ("W-SUN", "W-MON", "W-TUE", "W-WED", "W-THU", "W-FRI", "W-SAT")


def parse_time_string(value: str | time) -> time:
    """
    Parse a wall-clock time in HH:MM or HH:MM:SS format.

    Args:
        value: Time string (e.g. "09:30") or an existing time

    Returns:
        datetime.time

    Raises:
        ValidationFailed: If the string is not a valid time
    """
    if isinstance(value, time):
        return value
    match = TIME_REGEX.match(str(value).strip())
    if not match:
        raise ValidationFailed(f"Invalid time format: {value}")
    hours, minutes, seconds = match.groups()
    return time(int(hours), int(minutes), int(seconds or 0))


def time_to_seconds(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def calculate_shift_hours(start: str | time, end: str | time) -> float:
    """Duration in hours between two same-day wall-clock times."""
    start_t = parse_time_string(start)
    end_t = parse_time_string(end)
    return (time_to_seconds(end_t) - time_to_seconds(start_t)) / 3600.0


def validate_time_range(start: str | time, end: str | time) -> tuple[time, time]:
    start_t = parse_time_string(start)
    end_t = parse_time_string(end)
    if time_to_seconds(start_t) >= time_to_seconds(end_t):
        raise ValidationFailed(f"startTime must be before endTime ({start_t} >= {end_t})")
    return start_t, end_t


def times_overlap(start1: time, end1: time, start2: time, end2: time) -> bool:
    return time_to_seconds(start1) < time_to_seconds(end2) and time_to_seconds(end1) > time_to_seconds(start2)


def validate_day_of_week(day_of_week: int) -> int:
    if not isinstance(day_of_week, int) or isinstance(day_of_week, bool) or not 0 <= day_of_week <= 6:
        raise ValidationFailed(f"dayOfWeek must be an integer in [0, 6], got {day_of_week!r}")
    return day_of_week


def day_of_week_for(moment: datetime) -> int:
    """Weekday of a date/datetime in the 0 = Sunday convention."""
    return (moment.weekday() + 1) % 7


def get_day_name(day_of_week: int) -> str:
    if 0 <= day_of_week <= 6:
        return DAY_NAMES[day_of_week]
    return "Unknown"


def occurrence_end(timestamp: datetime, start: time, end: time) -> datetime:
    """End instant of an occurrence starting at `timestamp`."""
    return timestamp + timedelta(seconds=time_to_seconds(end) - time_to_seconds(start))
