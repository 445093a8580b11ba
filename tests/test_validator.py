import datetime as dt

import pytest

from shiftengine.domain.models import STATUS_ASSIGNED, Occurrence, OccurrenceClaim
from shiftengine.domain.repositories import OccurrenceRepository
from shiftengine.errors import NotFound, ValidationFailed
from shiftengine.validator import collect_schedule_issues, summarize_roster, validate_schedule_state


def test_clean_schedule_passes(service, session_factory, term, users):
    period, _, slot = term
    a, b, c = users
    service.register(slot.id, a)
    service.register(slot.id, b)
    first = service.list_occurrences_for_user(a.user_id)[0].occurrence_id
    service.drop_occurrence(first, a)
    service.pickup_occurrence(first, c)

    with session_factory() as session:
        validate_schedule_state(session, period.id)


def test_detects_hand_edited_occurrences(service, session_factory, term):
    """Test an occurrence on the wrong weekday is reported."""
    period, _, slot = term
    with session_factory() as session:
        session.add(Occurrence(slot_id=slot.id, timestamp=dt.datetime(2025, 1, 8, 9)))
        session.commit()

        issues = collect_schedule_issues(session, period.id)

    assert any("weekly expansion" in issue for issue in issues)
    assert any("Wednesday" in issue for issue in issues)


def test_detects_orphan_assignment(service, session_factory, term):
    """Test an assigned row without a slot claim is reported with its user."""
    period, _, slot = term
    with session_factory() as session:
        occurrence = OccurrenceRepository.get_by_slot(session, slot.id)[0]
        session.add(OccurrenceClaim(occurrence_id=occurrence.id, user_id=42, status=STATUS_ASSIGNED))
        session.commit()

        with pytest.raises(ValidationFailed) as exc_info:
            validate_schedule_state(session, period.id)

    assert exc_info.value.context["issues"] == [
        f"Occurrence {occurrence.id} has assigned rows without a slot claim: users [42]"
    ]


def test_unknown_period(db_session):
    with pytest.raises(NotFound):
        collect_schedule_issues(db_session, 404)


def test_summarize_roster(service, session_factory, term, users):
    period, _, slot = term
    with session_factory() as session:
        assert summarize_roster(session, period.id) == "No occurrence claims."

    service.register(slot.id, users[0])
    with session_factory() as session:
        summary = summarize_roster(session, period.id)

    assert "Claims per day per status:" in summary
    assert "2025-01-06" in summary
    assert "6.0" in summary
