"""Fan slot-level claims out to occurrence-level rows."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from shiftengine.domain.models import (
    STATUS_ASSIGNED,
    STATUS_DROPPED,
    Occurrence,
    OccurrenceClaim,
    RecurringSlot,
)
from shiftengine.domain.repositories import ClaimRepository, OccurrenceRepository

logger = logging.getLogger(__name__)


def assign_user_to_slot_occurrences(
    session: Session,
    slot: RecurringSlot,
    user_id: int,
    occurrences: Optional[List[Occurrence]] = None,
) -> List[OccurrenceClaim]:
    """
    Create an `assigned` row for the user on every occurrence of the slot.

    Occurrences the user already actively holds are skipped, and so are
    occurrences already at capacity (a pick-up may have filled the seat the
    user would otherwise take); capacity wins over fan-out.

    Args:
        session: Database session inside the caller's transaction
        slot: Slot whose occurrences receive the rows
        user_id: Claiming user
        occurrences: Occurrences to cover (default: all of the slot's)

    Returns:
        The created OccurrenceClaim rows
    """
    if occurrences is None:
        occurrences = OccurrenceRepository.get_by_slot(session, slot.id)
    if not occurrences:
        return []

    occurrence_ids = [occ.id for occ in occurrences]
    active_counts = dict(
        session.execute(
            select(OccurrenceClaim.occurrence_id, func.count(OccurrenceClaim.id))
            .where(
                OccurrenceClaim.occurrence_id.in_(occurrence_ids),
                OccurrenceClaim.status != STATUS_DROPPED,
            )
            .group_by(OccurrenceClaim.occurrence_id)
        ).all()
    )
    already_held = set(
        session.scalars(
            select(OccurrenceClaim.occurrence_id).where(
                OccurrenceClaim.occurrence_id.in_(occurrence_ids),
                OccurrenceClaim.user_id == user_id,
                OccurrenceClaim.status != STATUS_DROPPED,
            )
        )
    )

    created = []
    skipped_full = []
    for occurrence in occurrences:
        if occurrence.id in already_held:
            continue
        if active_counts.get(occurrence.id, 0) >= slot.slot_capacity:
            skipped_full.append(occurrence.id)
            continue
        created.append(OccurrenceClaim(occurrence_id=occurrence.id, user_id=user_id, status=STATUS_ASSIGNED))

    if skipped_full:
        logger.warning(
            "Slot %s: user %s not assigned to %d full occurrence(s): %s",
            slot.id, user_id, len(skipped_full), skipped_full,
        )
    session.add_all(created)
    session.flush()
    return created


def unassign_user_from_slot_occurrences(session: Session, slot: RecurringSlot, user_id: int) -> int:
    """Remove every occurrence-level row of the user across the slot. Returns number of deleted rows."""
    return ClaimRepository.delete_user_claims_for_slot(session, slot.id, user_id)


def refan_slot_claims(session: Session, slot: RecurringSlot) -> int:
    """
    Re-create occurrence rows for every standing claim of a slot.

    Called after regeneration so no recurring claim is left without rows on
    the fresh occurrences. An occurrence on which the user already has a row,
    dropped included, keeps that row and is not re-assigned.

    Returns:
        Number of rows created
    """
    occurrences = OccurrenceRepository.get_by_slot(session, slot.id)
    if not occurrences:
        return 0
    with_rows = set(
        session.execute(
            select(OccurrenceClaim.occurrence_id, OccurrenceClaim.user_id).where(
                OccurrenceClaim.occurrence_id.in_([occ.id for occ in occurrences])
            )
        ).all()
    )
    total = 0
    for claim in ClaimRepository.get_slot_claims(session, slot.id):
        uncovered = [occ for occ in occurrences if (occ.id, claim.user_id) not in with_rows]
        if uncovered:
            total += len(assign_user_to_slot_occurrences(session, slot, claim.user_id, uncovered))
    return total
