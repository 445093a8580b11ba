"""Services for scheduling rules."""

from .eligibility import (
    Identity,
    assert_can_access_period,
    assert_eligible,
    is_eligible,
    meets_balancing_requirement,
    meets_role_requirement,
)
from .timeplan import calculate_shift_hours, get_day_name, parse_time_string
from .windows import MODIFY, SIGNUP, VISIBILITY, is_window_open, require_window

__all__ = [
    "Identity",
    "assert_can_access_period",
    "assert_eligible",
    "is_eligible",
    "meets_balancing_requirement",
    "meets_role_requirement",
    "calculate_shift_hours",
    "get_day_name",
    "parse_time_string",
    "MODIFY",
    "SIGNUP",
    "VISIBILITY",
    "is_window_open",
    "require_window",
]
