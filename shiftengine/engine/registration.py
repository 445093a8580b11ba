"""Slot-level registration: capacity-gated sign-up and unregistration.

Every entry point expects to run inside one transaction with the per-slot lock
already held by the caller (see SchedulingService). The slot row is re-read
with SELECT ... FOR UPDATE where the dialect supports it, and the claim count
is always taken from the database at decision time.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from shiftengine.domain.models import Category, Period, RecurringSlot, SlotClaim
from shiftengine.domain.repositories import ClaimRepository, SlotRepository
from shiftengine.errors import AlreadyExists, CapacityExceeded, NotFound
from shiftengine.events import EVENT_REGISTER, EVENT_UNREGISTER, EventDelta, ScheduleEvent
from shiftengine.services.eligibility import (
    Identity,
    assert_balanced,
    assert_can_access_period,
    assert_eligible,
    assert_no_time_overlap,
    assert_self_service,
)
from shiftengine.services.windows import SIGNUP, require_window

from .fanout import assign_user_to_slot_occurrences, unassign_user_from_slot_occurrences

logger = logging.getLogger(__name__)


def load_slot_context(session: Session, slot_id: int, lock: bool = True) -> Tuple[RecurringSlot, Category, Period]:
    """
    Load a slot with its category and period.

    Raises:
        NotFound: If the slot does not exist
    """
    slot = SlotRepository.get_for_update(session, slot_id) if lock else SlotRepository.get_by_id(session, slot_id)
    if slot is None:
        raise NotFound("Shift schedule not found", slot_id=slot_id)
    category = slot.category
    return slot, category, category.period


def slot_event(session: Session, event_type: str, slot: RecurringSlot, period: Period, user_id: int,
               now: datetime) -> ScheduleEvent:
    """Build the post-commit event describing the slot after the change."""
    claims = ClaimRepository.get_slot_claims(session, slot.id)
    delta = EventDelta(
        available_slots=slot.slot_capacity - len(claims),
        total_slots=slot.slot_capacity,
        affected_users=tuple(sorted(claim.user_id for claim in claims)),
    )
    return ScheduleEvent(
        type=event_type,
        user_id=user_id,
        period_id=period.id,
        timestamp=now,
        delta=delta,
        slot_id=slot.id,
    )


class RegistrationEngine:
    """Register and unregister users on recurring slots."""

    def register(
        self,
        session: Session,
        slot_id: int,
        identity: Identity,
        now: datetime,
    ) -> Tuple[SlotClaim, ScheduleEvent]:
        """
        Self-service registration for a recurring slot.

        Checks run in order, each failing with its own error: slot exists,
        eligibility (period access, role requirement, self-service), signup
        window, duplicate claim, capacity. Overlap and balancing rules follow.

        Args:
            session: Session inside the caller's transaction
            slot_id: Target slot
            identity: Registering user
            now: Current wall-clock time in the facility timezone

        Returns:
            Tuple of (new SlotClaim, pending ScheduleEvent)
        """
        slot, category, period = load_slot_context(session, slot_id)

        assert_can_access_period(identity, period)
        assert_eligible(identity, category)
        assert_self_service(category, "assignment")
        require_window(period, SIGNUP, now)

        self._assert_not_claimed(session, slot, identity.user_id)
        claim_count = self._assert_capacity(session, slot)

        registered = SlotRepository.get_claimed_by_user(session, identity.user_id, period.id)
        assert_no_time_overlap(slot, registered)
        if category.is_balanced:
            siblings = SlotRepository.get_by_category(session, category.id)
            counts = SlotRepository.claim_counts(session, [s.id for s in siblings])
            assert_balanced(slot, category, siblings, counts)

        claim = self._insert_claim(session, slot, identity.user_id)
        logger.info(
            "User %s registered for slot %s (%d/%d)",
            identity.user_id, slot.id, claim_count + 1, slot.slot_capacity,
        )
        return claim, slot_event(session, EVENT_REGISTER, slot, period, identity.user_id, now)

    def unregister(
        self,
        session: Session,
        slot_id: int,
        identity: Identity,
        now: datetime,
    ) -> Tuple[SlotClaim, ScheduleEvent]:
        """
        Self-service unregistration: removes the SlotClaim and every
        occurrence-level row of the user across the slot.

        Returns:
            Tuple of (deleted SlotClaim, pending ScheduleEvent)
        """
        slot, category, period = load_slot_context(session, slot_id)

        assert_can_access_period(identity, period)
        assert_self_service(category, "unregistration")
        require_window(period, SIGNUP, now)

        claim = ClaimRepository.get_slot_claim(session, slot.id, identity.user_id)
        if claim is None:
            raise NotFound(
                "You are not registered for this shift schedule", slot_id=slot.id, user_id=identity.user_id
            )
        removed = self._delete_claim(session, slot, claim)
        logger.info("User %s unregistered from slot %s (%d occurrence row(s) removed)", identity.user_id, slot.id, removed)
        return claim, slot_event(session, EVENT_UNREGISTER, slot, period, identity.user_id, now)

    def force_register(
        self,
        session: Session,
        slot_id: int,
        target: Identity,
        now: datetime,
        actor: Optional[Identity] = None,
    ) -> Tuple[SlotClaim, ScheduleEvent]:
        """
        Administrator placement of a user on a slot.

        Windows, the self-service flag, overlap and balancing are skipped;
        period access (actor and target), duplicate and capacity still apply.
        """
        slot, _, period = load_slot_context(session, slot_id)

        if actor is not None:
            assert_can_access_period(actor, period)
        assert_can_access_period(target, period)

        self._assert_not_claimed(session, slot, target.user_id)
        self._assert_capacity(session, slot)

        claim = self._insert_claim(session, slot, target.user_id)
        logger.info(
            "User %s force-registered for slot %s by %s",
            target.user_id, slot.id, actor.user_id if actor else "system",
        )
        return claim, slot_event(session, EVENT_REGISTER, slot, period, target.user_id, now)

    def force_unregister(
        self,
        session: Session,
        slot_id: int,
        user_id: int,
        now: datetime,
        actor: Optional[Identity] = None,
    ) -> Tuple[SlotClaim, ScheduleEvent]:
        """Administrator removal of a user from a slot, ignoring windows and self-service."""
        slot, _, period = load_slot_context(session, slot_id)

        if actor is not None:
            assert_can_access_period(actor, period)

        claim = ClaimRepository.get_slot_claim(session, slot.id, user_id)
        if claim is None:
            raise NotFound("User is not registered for this shift schedule", slot_id=slot.id, user_id=user_id)
        removed = self._delete_claim(session, slot, claim)
        logger.info(
            "User %s force-unregistered from slot %s by %s (%d occurrence row(s) removed)",
            user_id, slot.id, actor.user_id if actor else "system", removed,
        )
        return claim, slot_event(session, EVENT_UNREGISTER, slot, period, user_id, now)

    @staticmethod
    def _assert_not_claimed(session: Session, slot: RecurringSlot, user_id: int) -> None:
        if ClaimRepository.get_slot_claim(session, slot.id, user_id) is not None:
            raise AlreadyExists(
                "User is already registered for this shift schedule", slot_id=slot.id, user_id=user_id
            )

    @staticmethod
    def _assert_capacity(session: Session, slot: RecurringSlot) -> int:
        count = ClaimRepository.count_slot_claims(session, slot.id)
        if count >= slot.slot_capacity:
            raise CapacityExceeded(
                "All slots for this shift schedule are filled",
                slot_id=slot.id,
                capacity=slot.slot_capacity,
            )
        return count

    @staticmethod
    def _insert_claim(session: Session, slot: RecurringSlot, user_id: int) -> SlotClaim:
        claim = SlotClaim(slot_id=slot.id, user_id=user_id)
        session.add(claim)
        session.flush()
        assign_user_to_slot_occurrences(session, slot, user_id)
        session.expire(slot, ["claims"])
        return claim

    @staticmethod
    def _delete_claim(session: Session, slot: RecurringSlot, claim: SlotClaim) -> int:
        removed = unassign_user_from_slot_occurrences(session, slot, claim.user_id)
        session.delete(claim)
        session.flush()
        session.expire(slot, ["claims"])
        return removed
