"""Tests for regeneration triggered by administrative edits."""

import datetime as dt

import pytest

from shiftengine.domain.models import STATUS_ASSIGNED, STATUS_DROPPED, OccurrenceClaim, RecurringSlot
from shiftengine.domain.repositories import ClaimRepository, OccurrenceRepository, SlotRepository
from shiftengine.engine.admin import SlotDefinition
from shiftengine.errors import NotFound, ValidationFailed


def _timestamps(session_factory, slot_id):
    with session_factory() as session:
        return [occ.timestamp for occ in OccurrenceRepository.get_by_slot(session, slot_id)]


def _user_rows(session_factory, slot_id, user_id):
    with session_factory() as session:
        rows = []
        for occ in OccurrenceRepository.get_by_slot(session, slot_id):
            claim = ClaimRepository.get_user_occurrence_claim(session, occ.id, user_id)
            rows.append((occ.timestamp, claim.status if claim else None))
        return rows


def test_shrinking_period_removes_out_of_range_occurrences(service, session_factory, term):
    """Test moving the period end earlier drops the later occurrences."""
    period, _, slot = term

    _, report = service.update_period(period.id, end=dt.datetime(2025, 1, 13))

    assert report.slots_regenerated == [slot.id]
    assert _timestamps(session_factory, slot.id) == [dt.datetime(2025, 1, 6, 9)]


def test_shrinking_period_to_no_weekday_deletes_slot(service, session_factory, term, users):
    """Test a slot left without occurrences is deleted with its claims."""
    period, _, slot = term
    service.register(slot.id, users[0])

    _, report = service.update_period(period.id, start=dt.datetime(2025, 1, 7), end=dt.datetime(2025, 1, 13))

    assert report.slots_deleted == [slot.id]
    with session_factory() as session:
        assert SlotRepository.get_by_id(session, slot.id) is None
        assert session.query(OccurrenceClaim).count() == 0
        assert ClaimRepository.get_slot_claims(session, slot.id) == []


def test_extending_period_refans_claims(service, session_factory, term, users):
    """Test standing claims cover the occurrences created by regeneration."""
    period, _, slot = term
    a, _, _ = users
    service.register(slot.id, a)

    service.update_period(period.id, end=dt.datetime(2025, 1, 27))

    assert _user_rows(session_factory, slot.id, a.user_id) == [
        (dt.datetime(2025, 1, 6, 9), STATUS_ASSIGNED),
        (dt.datetime(2025, 1, 13, 9), STATUS_ASSIGNED),
        (dt.datetime(2025, 1, 20, 9), STATUS_ASSIGNED),
    ]


def _active_users_on(session_factory, slot_id, timestamp):
    with session_factory() as session:
        for occ in OccurrenceRepository.get_by_slot(session, slot_id):
            if occ.timestamp == timestamp:
                return ClaimRepository.active_user_ids(session, occ.id)
    return None


def test_period_extension_keeps_drop_and_pickup(service, session_factory, term, users):
    """Test extending the period keeps a drop and the pick-up of the vacated seat."""
    period, _, slot = term
    a, b, c = users
    service.register(slot.id, a)
    service.register(slot.id, b)
    with session_factory() as session:
        second = OccurrenceRepository.get_by_slot(session, slot.id)[1].id
    service.drop_occurrence(second, a)
    service.pickup_occurrence(second, c)

    service.update_period(period.id, end=dt.datetime(2025, 1, 27))

    assert _active_users_on(session_factory, slot.id, dt.datetime(2025, 1, 13, 9)) == [b.user_id, c.user_id]
    assert _active_users_on(session_factory, slot.id, dt.datetime(2025, 1, 20, 9)) == [a.user_id, b.user_id]
    assert _user_rows(session_factory, slot.id, a.user_id) == [
        (dt.datetime(2025, 1, 6, 9), STATUS_ASSIGNED),
        (dt.datetime(2025, 1, 13, 9), STATUS_DROPPED),
        (dt.datetime(2025, 1, 20, 9), STATUS_ASSIGNED),
    ]


def test_regeneration_keeps_drop_history(service, session_factory, term, users):
    """Test a full regeneration leaves a dropped row in place instead of re-assigning the user."""
    period, _, slot = term
    a, _, _ = users
    service.register(slot.id, a)
    with session_factory() as session:
        first = OccurrenceRepository.get_by_slot(session, slot.id)[0].id
    service.drop_occurrence(first, a)

    service.generate_occurrences(period.id)

    rows = _user_rows(session_factory, slot.id, a.user_id)
    assert [status for _, status in rows] == [STATUS_DROPPED, STATUS_ASSIGNED]
    with session_factory() as session:
        assert session.query(OccurrenceClaim).filter_by(status=STATUS_DROPPED).count() == 1


def test_rows_on_vanished_timestamps_are_discarded(service, session_factory, term, users):
    """Test shrinking the period drops the rows of removed occurrences only."""
    period, _, slot = term
    a, _, c = users
    service.register(slot.id, a)
    with session_factory() as session:
        first, second = [occ.id for occ in OccurrenceRepository.get_by_slot(session, slot.id)]
    service.drop_occurrence(first, a)
    service.pickup_occurrence(first, c)
    service.drop_occurrence(second, a)

    service.update_period(period.id, end=dt.datetime(2025, 1, 13))

    assert _active_users_on(session_factory, slot.id, dt.datetime(2025, 1, 6, 9)) == [c.user_id]
    with session_factory() as session:
        assert session.query(OccurrenceClaim).count() == 2


def test_period_edit_without_range_change_keeps_occurrences(service, session_factory, term):
    period, _, slot = term
    with session_factory() as session:
        before = [occ.id for occ in OccurrenceRepository.get_by_slot(session, slot.id)]

    _, report = service.update_period(period.id, name="Renamed")

    assert report is None
    with session_factory() as session:
        assert [occ.id for occ in OccurrenceRepository.get_by_slot(session, slot.id)] == before


def test_inverted_window_rejected_without_change(service, session_factory, term):
    """Test a failed period edit rolls back entirely."""
    period, _, slot = term

    with pytest.raises(ValidationFailed):
        service.update_period(
            period.id,
            end=dt.datetime(2025, 1, 13),
            modify_start=dt.datetime(2025, 1, 10),
            modify_end=dt.datetime(2025, 1, 9),
        )

    assert len(_timestamps(session_factory, slot.id)) == 2


def test_period_start_must_precede_end(service):
    with pytest.raises(ValidationFailed):
        service.create_period("Bad", dt.datetime(2025, 1, 20), dt.datetime(2025, 1, 6))


def test_category_move_regenerates_in_new_range(service, session_factory, term, users):
    """Test moving a category regenerates its slots in the new period's range."""
    _, category, slot = term
    service.register(slot.id, users[0])
    summer = service.create_period("Summer", dt.datetime(2025, 6, 2), dt.datetime(2025, 6, 16))

    report = service.regenerate_for_category_move(category.id, summer.id)

    assert report.slots_regenerated == [slot.id]
    assert _user_rows(session_factory, slot.id, users[0].user_id) == [
        (dt.datetime(2025, 6, 2, 9), STATUS_ASSIGNED),
        (dt.datetime(2025, 6, 9, 9), STATUS_ASSIGNED),
    ]


def test_category_move_deletes_slots_without_occurrences(service, session_factory, term):
    """Test slots with no matching weekday in the new range are deleted."""
    _, category, slot = term
    wednesday = service.create_slot(category.id, 3, "09:00", "10:00")
    short = service.create_period("Short", dt.datetime(2025, 6, 2), dt.datetime(2025, 6, 4))

    _, report = service.update_category(category.id, period_id=short.id)

    assert report.slots_regenerated == [slot.id]
    assert report.slots_deleted == [wednesday.id]
    with session_factory() as session:
        assert [s.id for s in SlotRepository.get_by_category(session, category.id)] == [slot.id]


def test_slot_weekday_change_regenerates(service, session_factory, term, users):
    """Test changing the weekday moves every occurrence and re-fans the claim."""
    _, _, slot = term
    service.register(slot.id, users[0])

    updated, report = service.update_slot(slot.id, day_of_week=2, start_time="13:00", end_time="15:00")

    assert updated.id == slot.id
    assert report.occurrences_created == 2
    assert _user_rows(session_factory, slot.id, users[0].user_id) == [
        (dt.datetime(2025, 1, 7, 13), STATUS_ASSIGNED),
        (dt.datetime(2025, 1, 14, 13), STATUS_ASSIGNED),
    ]


def test_slot_capacity_change_does_not_regenerate(service, session_factory, term):
    _, _, slot = term
    with session_factory() as session:
        before = [occ.id for occ in OccurrenceRepository.get_by_slot(session, slot.id)]

    updated, report = service.update_slot(slot.id, slot_capacity=5)

    assert report is None
    assert updated.slot_capacity == 5
    with session_factory() as session:
        assert [occ.id for occ in OccurrenceRepository.get_by_slot(session, slot.id)] == before


def test_capacity_cannot_drop_below_claims(service, term, users):
    _, _, slot = term
    service.register(slot.id, users[0])
    service.register(slot.id, users[1])

    with pytest.raises(ValidationFailed):
        service.update_slot(slot.id, slot_capacity=1)


def test_slot_without_occurrences_is_rejected(service, session_factory, term):
    """Test creating a slot that falls on no date of the period fails and stores nothing."""
    period, category, _ = term
    service.update_period(period.id, end=dt.datetime(2025, 1, 8))

    with pytest.raises(ValidationFailed):
        service.create_slot(category.id, 5, "09:00", "10:00")
    with session_factory() as session:
        assert session.query(RecurringSlot).filter_by(day_of_week=5).count() == 0


def test_slot_time_range_validated(service, term):
    _, category, _ = term

    with pytest.raises(ValidationFailed):
        service.create_slot(category.id, 1, "12:00", "09:00")
    with pytest.raises(ValidationFailed):
        service.create_slot(category.id, 1, "09:00", "10:00", slot_capacity=0)


def test_exception_lifecycle_regenerates(service, session_factory, term):
    """Test adding, editing and removing a blackout range regenerates the period."""
    period, _, slot = term

    exception, _ = service.create_exception(
        period.id, "Holiday", dt.datetime(2025, 1, 6), dt.datetime(2025, 1, 6, 23, 59)
    )
    assert _timestamps(session_factory, slot.id) == [dt.datetime(2025, 1, 13, 9)]

    service.update_exception(exception.id, start=dt.datetime(2025, 1, 13), end=dt.datetime(2025, 1, 13, 23, 59))
    assert _timestamps(session_factory, slot.id) == [dt.datetime(2025, 1, 6, 9)]

    service.delete_exception(exception.id)
    assert len(_timestamps(session_factory, slot.id)) == 2


def test_bulk_create_skips_existing(service, session_factory, term):
    """Test bulk creation covers every category and skips existing weekday/start pairs."""
    period, category, slot = term
    second = service.create_category(period.id, name="Lab")

    created = service.bulk_create_slots(
        [category.id, second.id],
        [SlotDefinition(1, "09:00", "12:00"), SlotDefinition(4, "10:00", "11:00")],
        slot_capacity=3,
    )

    assert len(created) == 3
    assert all(s.slot_capacity == 3 for s in created)
    with session_factory() as session:
        assert len(SlotRepository.get_by_category(session, category.id)) == 2
        assert len(SlotRepository.get_by_category(session, second.id)) == 2


def test_delete_cascades(service, session_factory, term, users):
    period, _, slot = term
    service.register(slot.id, users[0])

    service.delete_period(period.id)

    with session_factory() as session:
        assert session.query(RecurringSlot).count() == 0
        assert session.query(OccurrenceClaim).count() == 0
    with pytest.raises(NotFound):
        service.generate_occurrences(period.id)


def test_delete_slot_and_category(service, session_factory, term, users):
    """Test deleting a slot removes its claims, and deleting a category removes its slots."""
    _, category, slot = term
    other = service.create_slot(category.id, 3, "09:00", "10:00")
    service.register(slot.id, users[0])

    service.delete_slot(slot.id)
    with session_factory() as session:
        assert ClaimRepository.get_slot_claims(session, slot.id) == []
        assert session.query(OccurrenceClaim).count() == 0
        assert [s.id for s in SlotRepository.get_by_category(session, category.id)] == [other.id]

    service.delete_category(category.id)
    with session_factory() as session:
        assert session.query(RecurringSlot).count() == 0
    with pytest.raises(NotFound):
        service.delete_slot(other.id)
