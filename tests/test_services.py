"""Tests for service layer (eligibility, windows, timeplan)."""

import datetime as dt
from datetime import time

import pytest

from shiftengine.domain.models import Category, Period, RecurringSlot
from shiftengine.errors import Forbidden, ValidationFailed, WindowClosed
from shiftengine.services.eligibility import (
    Identity,
    assert_balanced,
    assert_can_access_period,
    assert_eligible,
    assert_no_time_overlap,
    assert_self_service,
    meets_balancing_requirement,
    meets_role_requirement,
    validate_role_mode,
)
from shiftengine.services.timeplan import (
    calculate_shift_hours,
    day_of_week_for,
    get_day_name,
    occurrence_end,
    parse_time_string,
    times_overlap,
    validate_time_range,
)
from shiftengine.services.windows import MODIFY, SIGNUP, VISIBILITY, is_window_open, require_window, validate_period_bounds


def _category(**kwargs):
    defaults = dict(
        id=1,
        period_id=1,
        role_requirement_mode="disabled",
        required_role_ids=[],
        can_self_assign=True,
        balanced_across_period=False,
        balanced_across_day=False,
        balanced_across_overlap=False,
    )
    defaults.update(kwargs)
    return Category(**defaults)


def _slot(slot_id, day, start, end, capacity=2):
    return RecurringSlot(
        id=slot_id,
        category_id=1,
        day_of_week=day,
        start_time=parse_time_string(start),
        end_time=parse_time_string(end),
        slot_capacity=capacity,
    )


def _period(**windows):
    return Period(id=1, name="Term", start=dt.datetime(2025, 1, 6), end=dt.datetime(2025, 1, 20), **windows)


def test_parse_time_string():
    """Test time string parsing."""
    assert parse_time_string("07:30") == time(7, 30)
    assert parse_time_string("7:05:09") == time(7, 5, 9)
    with pytest.raises(ValidationFailed):
        parse_time_string("24:00")


def test_calculate_shift_hours():
    """Test shift duration calculation."""
    assert calculate_shift_hours("07:00", "15:00") == 8.0
    assert calculate_shift_hours("09:00", "12:30") == 3.5


def test_validate_time_range_rejects_empty_range():
    with pytest.raises(ValidationFailed):
        validate_time_range("10:00", "10:00")


def test_times_overlap_is_half_open():
    """Test back-to-back ranges do not overlap."""
    assert times_overlap(time(9), time(12), time(11), time(13))
    assert not times_overlap(time(9), time(12), time(12), time(14))


def test_day_of_week_convention():
    """Test 0 = Sunday."""
    assert day_of_week_for(dt.datetime(2025, 1, 5)) == 0
    assert day_of_week_for(dt.datetime(2025, 1, 6)) == 1
    assert get_day_name(1) == "Monday"
    assert get_day_name(9) == "Unknown"


def test_occurrence_end():
    assert occurrence_end(dt.datetime(2025, 1, 6, 9), time(9), time(12)) == dt.datetime(2025, 1, 6, 12)


@pytest.mark.parametrize(
    "mode, required, held, expected",
    [
        ("disabled", [1, 2], [], True),
        ("all", [1, 2], [1], False),
        ("all", [1, 2], [1, 2, 3], True),
        ("all", [], [], True),
        ("any", [1, 2], [2], True),
        ("any", [1, 2], [3], False),
        ("any", [], [], True),
    ],
)
def test_meets_role_requirement(mode, required, held, expected):
    """Test the three role-requirement modes."""
    assert meets_role_requirement(mode, required, held) is expected


def test_role_mode_validation():
    assert validate_role_mode("any") == "any"
    with pytest.raises(ValidationFailed):
        validate_role_mode("some")


def test_assert_eligible_messages():
    """Test failures name the mode that was violated."""
    with pytest.raises(Forbidden, match="all the required roles"):
        assert_eligible(Identity(1, {1}), _category(role_requirement_mode="all", required_role_ids=[1, 2]))
    with pytest.raises(Forbidden, match="any of the required roles"):
        assert_eligible(Identity(1, {3}), _category(role_requirement_mode="any", required_role_ids=[1, 2]))


def test_system_user_bypasses_roles_and_period_access():
    system = Identity(1, is_system_user=True)

    assert_eligible(system, _category(role_requirement_mode="all", required_role_ids=[1]))
    assert_can_access_period(system, _period(allowed_role_ids=[9]))


def test_period_access():
    """Test an empty allow-list opens the period to everyone."""
    assert_can_access_period(Identity(1), _period(allowed_role_ids=[]))
    with pytest.raises(Forbidden):
        assert_can_access_period(Identity(1, {3}), _period(allowed_role_ids=[9]))


def test_self_service_flag():
    assert_self_service(_category())
    with pytest.raises(Forbidden):
        assert_self_service(_category(can_self_assign=False))


def test_time_overlap_only_same_weekday():
    """Test overlap only counts slots on the same weekday."""
    target = _slot(1, 1, "09:00", "12:00")

    assert_no_time_overlap(target, [_slot(2, 2, "10:00", "11:00"), _slot(3, 1, "12:00", "13:00")])
    with pytest.raises(ValidationFailed, match="Monday"):
        assert_no_time_overlap(target, [_slot(4, 1, "11:00", "13:00")])


def test_balancing_across_period():
    """Test the busier slot is refused while a quieter slot still has room."""
    category = _category(balanced_across_period=True)
    monday, tuesday = _slot(1, 1, "09:00", "12:00"), _slot(2, 2, "09:00", "12:00")

    assert meets_balancing_requirement(monday, category, [monday, tuesday], {1: 0, 2: 0})
    assert not meets_balancing_requirement(monday, category, [monday, tuesday], {1: 1, 2: 0})
    with pytest.raises(ValidationFailed):
        assert_balanced(monday, category, [monday, tuesday], {1: 1, 2: 0})


def test_balancing_ignores_full_slots():
    category = _category(balanced_across_period=True)
    monday, tuesday = _slot(1, 1, "09:00", "12:00", capacity=3), _slot(2, 2, "09:00", "12:00", capacity=1)

    assert meets_balancing_requirement(monday, category, [monday, tuesday], {1: 2, 2: 1})


def test_balancing_across_day_and_overlap_scopes():
    """Test day and overlap scopes only compare slots inside the scope."""
    target = _slot(1, 1, "09:00", "12:00")
    other_day = _slot(2, 2, "09:00", "12:00")
    same_day_apart = _slot(3, 1, "14:00", "16:00")
    counts = {1: 1, 2: 0, 3: 0}

    by_day = _category(balanced_across_day=True)
    by_overlap = _category(balanced_across_overlap=True)

    assert not meets_balancing_requirement(target, by_day, [target, other_day, same_day_apart], counts)
    assert meets_balancing_requirement(target, by_day, [target, other_day], counts)
    assert meets_balancing_requirement(target, by_overlap, [target, other_day, same_day_apart], counts)


def test_window_open_only_when_both_bounds_set():
    period = _period(signup_start=dt.datetime(2025, 1, 1), signup_end=None)

    assert is_window_open(period, SIGNUP, dt.datetime(2020, 1, 1))
    assert is_window_open(_period(), VISIBILITY, dt.datetime(2020, 1, 1))


def test_window_bounds_inclusive():
    """Test both window endpoints count as open."""
    period = _period(modify_start=dt.datetime(2025, 1, 1), modify_end=dt.datetime(2025, 1, 5))

    assert is_window_open(period, MODIFY, dt.datetime(2025, 1, 1))
    assert is_window_open(period, MODIFY, dt.datetime(2025, 1, 5))
    with pytest.raises(WindowClosed) as exc_info:
        require_window(period, MODIFY, dt.datetime(2025, 1, 5, 0, 0, 1))
    assert exc_info.value.context["window"] == MODIFY


def test_validate_period_bounds():
    start, end = dt.datetime(2025, 1, 6), dt.datetime(2025, 1, 20)

    validate_period_bounds(start, end, signup=(dt.datetime(2025, 1, 1), None))
    with pytest.raises(ValidationFailed):
        validate_period_bounds(end, start)
    with pytest.raises(ValidationFailed, match="Signup"):
        validate_period_bounds(start, end, signup=(dt.datetime(2025, 1, 2), dt.datetime(2025, 1, 1)))
