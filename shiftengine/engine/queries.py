"""Read-only views: registration listing, a user's occurrences, period roster."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftengine.domain.models import Category, Occurrence, OccurrenceClaim, RecurringSlot
from shiftengine.domain.repositories import ClaimRepository, PeriodRepository, SlotRepository
from shiftengine.errors import NotFound
from shiftengine.services.eligibility import (
    Identity,
    assert_can_access_period,
    is_eligible,
    meets_balancing_requirement,
)
from shiftengine.services.timeplan import times_overlap
from shiftengine.services.windows import SIGNUP, VISIBILITY, is_window_open, require_window


@dataclass(frozen=True)
class SlotAvailability:
    """One slot as seen by a user deciding whether to register."""

    slot_id: int
    category_id: int
    category_name: str
    day_of_week: int
    start_time: time
    end_time: time
    total_slots: int
    available_slots: int
    user_ids: Tuple[int, ...] = field(default_factory=tuple)
    is_registered: bool = False
    can_self_assign: bool = True
    meets_role_requirement: bool = True
    meets_balancing_requirement: bool = True
    has_time_overlap: bool = False
    signup_open: bool = True

    @property
    def can_register(self) -> bool:
        return (
            not self.is_registered
            and self.can_self_assign
            and self.meets_role_requirement
            and self.meets_balancing_requirement
            and self.available_slots > 0
            and not self.has_time_overlap
            and self.signup_open
        )


@dataclass(frozen=True)
class RosterEntry:
    """One occurrence-level row, flattened for export and attendance lookups."""

    occurrence_id: int
    slot_id: int
    category_id: int
    timestamp: datetime
    start_time: time
    end_time: time
    user_id: int
    status: str


def list_for_registration(
    session: Session,
    period_id: int,
    identity: Identity,
    now: datetime,
    day_of_week: Optional[int] = None,
) -> List[SlotAvailability]:
    """
    List every slot of a period with its availability for the caller.

    Raises:
        NotFound: Unknown period
        WindowClosed: The visibility window is configured and closed
        Forbidden: The caller may not access the period
    """
    period = PeriodRepository.get_by_id(session, period_id)
    if period is None:
        raise NotFound("Period not found", period_id=period_id)
    require_window(period, VISIBILITY, now)
    assert_can_access_period(identity, period)

    all_slots = SlotRepository.get_by_period(session, period.id)
    slots = all_slots
    if day_of_week is not None:
        slots = [s for s in all_slots if s.day_of_week == day_of_week]
    counts = SlotRepository.claim_counts(session, [s.id for s in all_slots])
    registered = [s for s in all_slots if identity.user_id in s.claimed_user_ids]
    signup_open = is_window_open(period, SIGNUP, now)

    listing = []
    for slot in slots:
        category: Category = slot.category
        users = tuple(slot.claimed_user_ids)
        is_registered = identity.user_id in users
        siblings = [s for s in all_slots if s.category_id == category.id]
        has_overlap = not is_registered and any(
            other.day_of_week == slot.day_of_week
            and times_overlap(other.start_time, other.end_time, slot.start_time, slot.end_time)
            for other in registered
        )
        listing.append(
            SlotAvailability(
                slot_id=slot.id,
                category_id=category.id,
                category_name=category.name,
                day_of_week=slot.day_of_week,
                start_time=slot.start_time,
                end_time=slot.end_time,
                total_slots=slot.slot_capacity,
                available_slots=slot.slot_capacity - counts.get(slot.id, 0),
                user_ids=users,
                is_registered=is_registered,
                can_self_assign=bool(category.can_self_assign),
                meets_role_requirement=is_eligible(identity, category),
                meets_balancing_requirement=meets_balancing_requirement(slot, category, siblings, counts),
                has_time_overlap=has_overlap,
                signup_open=signup_open,
            )
        )
    return listing


def list_occurrences_for_user(
    session: Session,
    user_id: int,
    period_id: Optional[int] = None,
    include_dropped: bool = False,
) -> List[RosterEntry]:
    """A user's occurrence rows in chronological order."""
    rows = ClaimRepository.get_for_user(session, user_id, period_id)
    if not include_dropped:
        rows = [row for row in rows if row.is_active]
    return [_entry(row) for row in rows]


def occurrence_roster(session: Session, period_id: int, include_dropped: bool = True) -> List[RosterEntry]:
    """Every occurrence-level row under a period, ordered by time, slot and row id."""
    if PeriodRepository.get_by_id(session, period_id) is None:
        raise NotFound("Period not found", period_id=period_id)
    stmt = (
        select(OccurrenceClaim)
        .join(Occurrence, OccurrenceClaim.occurrence_id == Occurrence.id)
        .join(RecurringSlot, Occurrence.slot_id == RecurringSlot.id)
        .join(Category, RecurringSlot.category_id == Category.id)
        .where(Category.period_id == period_id)
        .order_by(Occurrence.timestamp, Occurrence.slot_id, OccurrenceClaim.id)
    )
    rows = list(session.scalars(stmt))
    if not include_dropped:
        rows = [row for row in rows if row.is_active]
    return [_entry(row) for row in rows]


def _entry(row: OccurrenceClaim) -> RosterEntry:
    occurrence = row.occurrence
    slot = occurrence.slot
    return RosterEntry(
        occurrence_id=occurrence.id,
        slot_id=slot.id,
        category_id=slot.category_id,
        timestamp=occurrence.timestamp,
        start_time=slot.start_time,
        end_time=slot.end_time,
        user_id=row.user_id,
        status=row.status,
    )
