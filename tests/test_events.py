"""Tests for post-commit schedule events."""

import datetime as dt

import pytest

from shiftengine.errors import CapacityExceeded
from shiftengine.events import (
    EVENT_REGISTER,
    EVENT_UNREGISTER,
    EventDelta,
    EventDispatcher,
    ScheduleEvent,
)


def test_register_and_unregister_deltas(service, clock, events, term, users):
    """Test slot events carry the remaining seats and the current claimants."""
    period, _, slot = term
    a, b, _ = users

    service.register(slot.id, a)
    service.register(slot.id, b)
    service.unregister(slot.id, a)

    first, second = events.of_type(EVENT_REGISTER)
    removed, = events.of_type(EVENT_UNREGISTER)
    assert first.delta == EventDelta(available_slots=1, total_slots=2, affected_users=(a.user_id,))
    assert second.delta.affected_users == (a.user_id, b.user_id)
    assert removed.user_id == a.user_id
    assert removed.delta == EventDelta(available_slots=1, total_slots=2, affected_users=(b.user_id,))
    assert removed.period_id == period.id
    assert removed.slot_id == slot.id
    assert removed.timestamp == clock.now


def test_no_event_on_failure(service, events, term, users):
    _, _, slot = term
    a, b, c = users
    service.register(slot.id, a)
    service.register(slot.id, b)

    with pytest.raises(CapacityExceeded):
        service.register(slot.id, c)

    assert len(events.events) == 2


def test_failing_subscriber_does_not_fail_operation(service, events, session_factory, term, users):
    """Test the operation stays committed when a subscriber raises."""
    _, _, slot = term

    def broken(event):
        raise RuntimeError("socket closed")

    service.subscribe(broken)
    claim = service.register(slot.id, users[0])

    assert claim.user_id == users[0].user_id
    assert len(events.events) == 1


def test_unsubscribe():
    dispatcher = EventDispatcher()
    received = []
    unsubscribe = dispatcher.subscribe(received.append)
    event = ScheduleEvent(
        type=EVENT_REGISTER,
        user_id=1,
        period_id=1,
        timestamp=dt.datetime(2025, 1, 1),
        delta=EventDelta(1, 2, (1,)),
        slot_id=3,
    )

    dispatcher.publish(event)
    unsubscribe()
    dispatcher.publish(event)

    assert received == [event]


def test_event_wire_shape():
    """Test to_dict uses the camelCase wire names."""
    event = ScheduleEvent(
        type="drop",
        user_id=7,
        period_id=2,
        timestamp=dt.datetime(2025, 1, 6, 9),
        delta=EventDelta(available_slots=1, total_slots=2, affected_users=(8,)),
        occurrence_id=11,
    )

    assert event.to_dict() == {
        "type": "drop",
        "userId": 7,
        "periodId": 2,
        "timestamp": "2025-01-06T09:00:00",
        "delta": {"availableSlots": 1, "totalSlots": 2, "affectedUsers": [8]},
        "occurrenceId": 11,
    }
