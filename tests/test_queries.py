"""Tests for the read-only listing and roster views."""

import datetime as dt

import pytest

from shiftengine.domain.models import STATUS_ASSIGNED, STATUS_DROPPED, STATUS_PICKED_UP
from shiftengine.errors import Forbidden, NotFound, WindowClosed
from shiftengine.services.eligibility import Identity


def test_listing_reports_availability(service, term, users):
    """Test listing shows capacity, remaining seats and the caller's registration."""
    period, _, slot = term
    a, b, _ = users
    service.register(slot.id, a)

    mine, = service.list_for_registration(period.id, a)
    theirs, = service.list_for_registration(period.id, b)

    assert mine.slot_id == slot.id
    assert mine.total_slots == 2
    assert mine.available_slots == 1
    assert mine.user_ids == (a.user_id,)
    assert mine.is_registered and not mine.can_register
    assert not theirs.is_registered and theirs.can_register


def test_listing_flags(service, term, users):
    """Test role, overlap and signup flags feed can_register."""
    period, category, slot = term
    a, b, _ = users
    overlapping = service.create_slot(category.id, 1, "11:00", "13:00")
    service.register(slot.id, a)
    service.update_period(period.id, signup_start=dt.datetime(2025, 2, 1), signup_end=dt.datetime(2025, 2, 2))

    listing = {entry.slot_id: entry for entry in service.list_for_registration(period.id, a)}
    assert listing[overlapping.id].has_time_overlap
    assert not listing[overlapping.id].signup_open
    assert not listing[overlapping.id].can_register

    service.update_category(category.id, role_requirement_mode="any", required_role_ids=[5])
    listing = {entry.slot_id: entry for entry in service.list_for_registration(period.id, b)}
    assert not listing[slot.id].meets_role_requirement
    assert not listing[overlapping.id].has_time_overlap


def test_listing_filters_by_weekday(service, term, users):
    period, category, slot = term
    service.create_slot(category.id, 3, "09:00", "10:00")

    assert [e.slot_id for e in service.list_for_registration(period.id, users[0], day_of_week=1)] == [slot.id]
    assert len(service.list_for_registration(period.id, users[0])) == 2


def test_listing_gates(service, clock, term, users):
    """Test unknown periods, closed visibility and restricted access are refused."""
    period, _, _ = term

    with pytest.raises(NotFound):
        service.list_for_registration(999, users[0])

    service.update_period(period.id, allowed_role_ids=[40])
    with pytest.raises(Forbidden):
        service.list_for_registration(period.id, users[0])
    assert service.list_for_registration(period.id, Identity(1, {40}))

    service.update_period(period.id, visible_start=dt.datetime(2025, 1, 1), visible_end=dt.datetime(2025, 1, 31))
    with pytest.raises(WindowClosed):
        service.list_for_registration(period.id, Identity(1, {40}))
    clock.now = dt.datetime(2025, 1, 1)
    assert service.list_for_registration(period.id, Identity(1, {40}))


def test_user_occurrences_and_roster(service, session_factory, term, users):
    """Test per-user listing hides dropped rows unless asked, the roster keeps them."""
    period, _, slot = term
    a, b, c = users
    service.register(slot.id, a)
    service.register(slot.id, b)
    first = service.list_occurrences_for_user(a.user_id)[0].occurrence_id
    service.drop_occurrence(first, a)
    service.pickup_occurrence(first, c)

    assert [e.timestamp for e in service.list_occurrences_for_user(a.user_id)] == [dt.datetime(2025, 1, 13, 9)]
    assert [e.status for e in service.list_occurrences_for_user(a.user_id, include_dropped=True)] == [
        STATUS_DROPPED,
        STATUS_ASSIGNED,
    ]
    assert service.list_occurrences_for_user(c.user_id, period_id=period.id)[0].status == STATUS_PICKED_UP

    roster = service.occurrence_roster(period.id)
    assert len(roster) == 5
    assert len(service.occurrence_roster(period.id, include_dropped=False)) == 4
    assert [e.timestamp for e in roster] == sorted(e.timestamp for e in roster)
