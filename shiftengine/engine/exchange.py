"""Occurrence-level drop and pick-up.

State machine per (occurrence, user)::

    [no row] --register--> assigned --drop--> dropped
    dropped (user A) --pickup (user B)--> picked_up (new row for B)

Dropped rows stay as history; capacity only counts non-dropped rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Tuple

from sqlalchemy.orm import Session

from shiftengine.domain.models import (
    STATUS_DROPPED,
    STATUS_PICKED_UP,
    Category,
    Occurrence,
    OccurrenceClaim,
    Period,
    RecurringSlot,
)
from shiftengine.domain.repositories import ClaimRepository, OccurrenceRepository
from shiftengine.errors import AlreadyExists, CapacityExceeded, NotFound, ValidationFailed
from shiftengine.events import EVENT_DROP, EVENT_PICKUP, EventDelta, ScheduleEvent
from shiftengine.services.eligibility import (
    Identity,
    assert_can_access_period,
    assert_eligible,
    assert_self_service,
)
from shiftengine.services.timeplan import occurrence_end
from shiftengine.services.windows import MODIFY, require_window

logger = logging.getLogger(__name__)


def load_occurrence_context(
    session: Session, occurrence_id: int
) -> Tuple[Occurrence, RecurringSlot, Category, Period]:
    occurrence = OccurrenceRepository.get_for_update(session, occurrence_id)
    if occurrence is None:
        raise NotFound("Shift occurrence not found", occurrence_id=occurrence_id)
    slot = occurrence.slot
    category = slot.category
    return occurrence, slot, category, category.period


def occurrence_event(
    session: Session,
    event_type: str,
    occurrence: Occurrence,
    slot: RecurringSlot,
    period: Period,
    user_id: int,
    now: datetime,
) -> ScheduleEvent:
    """Build the post-commit event describing the occurrence after the change."""
    active = ClaimRepository.active_user_ids(session, occurrence.id)
    delta = EventDelta(
        available_slots=slot.slot_capacity - len(active),
        total_slots=slot.slot_capacity,
        affected_users=tuple(active),
    )
    return ScheduleEvent(
        type=event_type,
        user_id=user_id,
        period_id=period.id,
        timestamp=now,
        delta=delta,
        slot_id=slot.id,
        occurrence_id=occurrence.id,
    )


def _assert_future(occurrence: Occurrence, now: datetime, action: str) -> None:
    if occurrence.timestamp <= now:
        raise ValidationFailed(
            f"You can only {action} future shifts",
            occurrence_id=occurrence.id,
            timestamp=occurrence.timestamp,
        )


class ExchangeEngine:
    """Drop and pick up individual occurrences."""

    def drop(
        self,
        session: Session,
        occurrence_id: int,
        identity: Identity,
        now: datetime,
    ) -> Tuple[OccurrenceClaim, ScheduleEvent]:
        """
        Release the caller's seat on one occurrence.

        The SlotClaim is untouched, so the recurring claim stays in force for
        every other occurrence.

        Args:
            session: Session inside the caller's transaction
            occurrence_id: Occurrence to drop
            identity: Dropping user
            now: Current wall-clock time in the facility timezone

        Returns:
            Tuple of (the row now marked dropped, pending ScheduleEvent)
        """
        occurrence, slot, _, period = load_occurrence_context(session, occurrence_id)

        assert_can_access_period(identity, period)
        _assert_future(occurrence, now, "drop")
        require_window(period, MODIFY, now)

        row = ClaimRepository.get_active_occurrence_claim(session, occurrence.id, identity.user_id)
        if row is None:
            previous = ClaimRepository.get_user_occurrence_claim(session, occurrence.id, identity.user_id)
            if previous is not None and previous.status == STATUS_DROPPED:
                raise ValidationFailed(
                    "You have already dropped this shift occurrence",
                    occurrence_id=occurrence.id,
                    user_id=identity.user_id,
                )
            raise NotFound(
                "You are not assigned to this shift occurrence",
                occurrence_id=occurrence.id,
                user_id=identity.user_id,
            )

        row.status = STATUS_DROPPED
        session.flush()
        logger.info("User %s dropped occurrence %s (slot %s, %s)", identity.user_id, occurrence.id, slot.id,
                    occurrence.timestamp)
        return row, occurrence_event(session, EVENT_DROP, occurrence, slot, period, identity.user_id, now)

    def pickup(
        self,
        session: Session,
        occurrence_id: int,
        identity: Identity,
        now: datetime,
    ) -> Tuple[OccurrenceClaim, ScheduleEvent]:
        """
        Take over a vacancy left by a dropped seat.

        Requires an uncovered dropped row on the occurrence and a free seat
        under the slot capacity. A user who holds any row on the occurrence,
        or a standing claim on its slot, may not pick it up.

        Returns:
            Tuple of (new picked_up row, pending ScheduleEvent)
        """
        occurrence, slot, category, period = load_occurrence_context(session, occurrence_id)

        _assert_future(occurrence, now, "pick up")
        require_window(period, MODIFY, now)
        assert_can_access_period(identity, period)
        assert_eligible(identity, category)
        assert_self_service(category, "pickup")

        if ClaimRepository.get_user_occurrence_claim(session, occurrence.id, identity.user_id) is not None:
            raise AlreadyExists(
                "You already have a record on this shift occurrence",
                occurrence_id=occurrence.id,
                user_id=identity.user_id,
            )
        if ClaimRepository.get_slot_claim(session, slot.id, identity.user_id) is not None:
            raise AlreadyExists(
                "You are already registered for this shift schedule",
                occurrence_id=occurrence.id,
                slot_id=slot.id,
            )

        if ClaimRepository.open_vacancies(session, occurrence.id) <= 0:
            raise CapacityExceeded("This shift occurrence has no open vacancy", occurrence_id=occurrence.id)
        if ClaimRepository.count_active(session, occurrence.id) >= slot.slot_capacity:
            raise CapacityExceeded(
                "This shift occurrence is already full",
                occurrence_id=occurrence.id,
                capacity=slot.slot_capacity,
            )

        self._assert_no_occurrence_overlap(session, occurrence, slot, identity.user_id)

        row = OccurrenceClaim(occurrence_id=occurrence.id, user_id=identity.user_id, status=STATUS_PICKED_UP)
        session.add(row)
        session.flush()
        logger.info("User %s picked up occurrence %s (slot %s, %s)", identity.user_id, occurrence.id, slot.id,
                    occurrence.timestamp)
        return row, occurrence_event(session, EVENT_PICKUP, occurrence, slot, period, identity.user_id, now)

    @staticmethod
    def _assert_no_occurrence_overlap(
        session: Session, occurrence: Occurrence, slot: RecurringSlot, user_id: int
    ) -> None:
        start = occurrence.timestamp
        end = occurrence_end(start, slot.start_time, slot.end_time)
        day = start.replace(hour=0, minute=0, second=0, microsecond=0)
        for other in ClaimRepository.get_active_occurrences_for_user(session, user_id, day, day + timedelta(days=1)):
            if other.id == occurrence.id:
                continue
            other_end = occurrence_end(other.timestamp, other.slot.start_time, other.slot.end_time)
            if start < other_end and other.timestamp < end:
                raise ValidationFailed(
                    "You already have a shift scheduled that overlaps with this time.",
                    occurrence_id=occurrence.id,
                    overlapping_occurrence_id=other.id,
                )
