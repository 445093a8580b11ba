"""Repository classes for data access.

Repositories never commit; callers own the transaction (see db.transaction_scope).
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .models import (
    STATUS_DROPPED,
    STATUS_PICKED_UP,
    Category,
    Occurrence,
    OccurrenceClaim,
    Period,
    PeriodException,
    RecurringSlot,
    SlotClaim,
)


def _supports_row_locks(session: Session) -> bool:
    return session.get_bind().dialect.name not in ("sqlite",)


class PeriodRepository:
    """Repository for period data access."""

    @staticmethod
    def get_by_id(session: Session, period_id: int) -> Optional[Period]:
        """Get period by ID."""
        return session.get(Period, period_id)

    @staticmethod
    def get_all(session: Session) -> List[Period]:
        """Get all periods ordered by start."""
        return list(session.scalars(select(Period).order_by(Period.start, Period.id)))

    @staticmethod
    def get_exceptions(session: Session, period_id: int) -> List[PeriodException]:
        """Get blackout ranges for a period."""
        return list(
            session.scalars(
                select(PeriodException)
                .where(PeriodException.period_id == period_id)
                .order_by(PeriodException.start)
            )
        )

    @staticmethod
    def get_exception(session: Session, exception_id: int) -> Optional[PeriodException]:
        return session.get(PeriodException, exception_id)


class CategoryRepository:
    """Repository for category data access."""

    @staticmethod
    def get_by_id(session: Session, category_id: int) -> Optional[Category]:
        """Get category by ID."""
        return session.get(Category, category_id)

    @staticmethod
    def get_by_period(session: Session, period_id: int) -> List[Category]:
        """Get all categories of a period."""
        return list(session.scalars(select(Category).where(Category.period_id == period_id).order_by(Category.id)))


class SlotRepository:
    """Repository for recurring slot data access."""

    @staticmethod
    def get_by_id(session: Session, slot_id: int) -> Optional[RecurringSlot]:
        """Get slot by ID."""
        return session.get(RecurringSlot, slot_id)

    @staticmethod
    def get_for_update(session: Session, slot_id: int) -> Optional[RecurringSlot]:
        """
        Get slot by ID holding an exclusive row lock until the transaction ends.

        SQLite has no row locks; there the caller's per-slot mutex provides the
        serialization.
        """
        stmt = select(RecurringSlot).where(RecurringSlot.id == slot_id)
        if _supports_row_locks(session):
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    @staticmethod
    def get_by_category(session: Session, category_id: int) -> List[RecurringSlot]:
        """Get all slots of a category ordered by weekday and time."""
        return list(
            session.scalars(
                select(RecurringSlot)
                .where(RecurringSlot.category_id == category_id)
                .order_by(RecurringSlot.day_of_week, RecurringSlot.start_time, RecurringSlot.id)
            )
        )

    @staticmethod
    def get_by_period(session: Session, period_id: int) -> List[RecurringSlot]:
        """Get all slots under every category of a period."""
        return list(
            session.scalars(
                select(RecurringSlot)
                .join(Category, RecurringSlot.category_id == Category.id)
                .where(Category.period_id == period_id)
                .order_by(RecurringSlot.day_of_week, RecurringSlot.start_time, RecurringSlot.id)
            )
        )

    @staticmethod
    def get_claimed_by_user(session: Session, user_id: int, period_id: int) -> List[RecurringSlot]:
        """Get slots of a period the user holds a standing claim on."""
        return list(
            session.scalars(
                select(RecurringSlot)
                .join(SlotClaim, SlotClaim.slot_id == RecurringSlot.id)
                .join(Category, RecurringSlot.category_id == Category.id)
                .where(SlotClaim.user_id == user_id, Category.period_id == period_id)
                .order_by(RecurringSlot.day_of_week, RecurringSlot.start_time)
            )
        )

    @staticmethod
    def claim_counts(session: Session, slot_ids: Iterable[int]) -> Dict[int, int]:
        """Count standing claims per slot."""
        slot_ids = list(slot_ids)
        if not slot_ids:
            return {}
        rows = session.execute(
            select(SlotClaim.slot_id, func.count(SlotClaim.id))
            .where(SlotClaim.slot_id.in_(slot_ids))
            .group_by(SlotClaim.slot_id)
        )
        counts = {slot_id: 0 for slot_id in slot_ids}
        counts.update({slot_id: count for slot_id, count in rows})
        return counts


class OccurrenceRepository:
    """Repository for occurrence data access."""

    @staticmethod
    def get_by_id(session: Session, occurrence_id: int) -> Optional[Occurrence]:
        """Get occurrence by ID."""
        return session.get(Occurrence, occurrence_id)

    @staticmethod
    def get_for_update(session: Session, occurrence_id: int) -> Optional[Occurrence]:
        """Get occurrence by ID holding an exclusive row lock where supported."""
        stmt = select(Occurrence).where(Occurrence.id == occurrence_id)
        if _supports_row_locks(session):
            stmt = stmt.with_for_update()
        return session.scalars(stmt).first()

    @staticmethod
    def get_by_slot(session: Session, slot_id: int) -> List[Occurrence]:
        """Get all occurrences of a slot in chronological order."""
        return list(
            session.scalars(select(Occurrence).where(Occurrence.slot_id == slot_id).order_by(Occurrence.timestamp))
        )

    @staticmethod
    def get_by_period(session: Session, period_id: int) -> List[Occurrence]:
        """Get all occurrences under a period in chronological order."""
        return list(
            session.scalars(
                select(Occurrence)
                .join(RecurringSlot, Occurrence.slot_id == RecurringSlot.id)
                .join(Category, RecurringSlot.category_id == Category.id)
                .where(Category.period_id == period_id)
                .order_by(Occurrence.timestamp, Occurrence.slot_id)
            )
        )

    @staticmethod
    def replace_for_slot(session: Session, slot: RecurringSlot, timestamps: List[datetime]) -> List[Occurrence]:
        """
        Replace every occurrence of a slot with fresh rows for the given timestamps.

        Claim rows on an old occurrence whose timestamp survives are carried over
        to the fresh occurrence with the same timestamp, keeping their status and
        creation time. Rows on timestamps that no longer exist go with their
        occurrence. Deletes are flushed before inserts so the (slot, timestamp)
        unique constraint never sees both.
        """
        kept = set(timestamps)
        carried: Dict[datetime, List[tuple]] = {}
        rows = session.execute(
            select(Occurrence.timestamp, OccurrenceClaim.user_id, OccurrenceClaim.status, OccurrenceClaim.created_at)
            .join(OccurrenceClaim, OccurrenceClaim.occurrence_id == Occurrence.id)
            .where(Occurrence.slot_id == slot.id)
            .order_by(OccurrenceClaim.id)
        ).all()
        for timestamp, user_id, status, created_at in rows:
            if timestamp in kept:
                carried.setdefault(timestamp, []).append((user_id, status, created_at))

        for occurrence in OccurrenceRepository.get_by_slot(session, slot.id):
            session.delete(occurrence)
        session.flush()
        session.expire(slot, ["occurrences"])

        fresh = [Occurrence(slot_id=slot.id, timestamp=ts) for ts in timestamps]
        session.add_all(fresh)
        session.flush()
        for occurrence in fresh:
            for user_id, status, created_at in carried.get(occurrence.timestamp, []):
                session.add(
                    OccurrenceClaim(
                        occurrence_id=occurrence.id, user_id=user_id, status=status, created_at=created_at
                    )
                )
        session.flush()
        session.expire(slot, ["occurrences"])
        return fresh


class ClaimRepository:
    """Repository for slot-level and occurrence-level claims."""

    @staticmethod
    def get_slot_claim(session: Session, slot_id: int, user_id: int) -> Optional[SlotClaim]:
        return session.scalars(
            select(SlotClaim).where(SlotClaim.slot_id == slot_id, SlotClaim.user_id == user_id)
        ).first()

    @staticmethod
    def get_slot_claims(session: Session, slot_id: int) -> List[SlotClaim]:
        return list(session.scalars(select(SlotClaim).where(SlotClaim.slot_id == slot_id).order_by(SlotClaim.id)))

    @staticmethod
    def count_slot_claims(session: Session, slot_id: int) -> int:
        return session.scalar(select(func.count(SlotClaim.id)).where(SlotClaim.slot_id == slot_id)) or 0

    @staticmethod
    def get_occurrence_claims(session: Session, occurrence_id: int) -> List[OccurrenceClaim]:
        return list(
            session.scalars(
                select(OccurrenceClaim)
                .where(OccurrenceClaim.occurrence_id == occurrence_id)
                .order_by(OccurrenceClaim.id)
            )
        )

    @staticmethod
    def get_user_occurrence_claim(session: Session, occurrence_id: int, user_id: int) -> Optional[OccurrenceClaim]:
        """Get the user's most recent row on an occurrence, if any."""
        return session.scalars(
            select(OccurrenceClaim)
            .where(OccurrenceClaim.occurrence_id == occurrence_id, OccurrenceClaim.user_id == user_id)
            .order_by(OccurrenceClaim.id.desc())
        ).first()

    @staticmethod
    def get_active_occurrence_claim(session: Session, occurrence_id: int, user_id: int) -> Optional[OccurrenceClaim]:
        """Get the user's non-dropped row on an occurrence, if any."""
        return session.scalars(
            select(OccurrenceClaim).where(
                OccurrenceClaim.occurrence_id == occurrence_id,
                OccurrenceClaim.user_id == user_id,
                OccurrenceClaim.status != STATUS_DROPPED,
            )
        ).first()

    @staticmethod
    def get_active_occurrences_for_user(
        session: Session, user_id: int, start: datetime, end: datetime
    ) -> List[Occurrence]:
        """Get occurrences with timestamp in [start, end) on which the user holds a non-dropped row."""
        return list(
            session.scalars(
                select(Occurrence)
                .join(OccurrenceClaim, OccurrenceClaim.occurrence_id == Occurrence.id)
                .where(
                    OccurrenceClaim.user_id == user_id,
                    OccurrenceClaim.status != STATUS_DROPPED,
                    Occurrence.timestamp >= start,
                    Occurrence.timestamp < end,
                )
                .order_by(Occurrence.timestamp)
            )
        )

    @staticmethod
    def count_active(session: Session, occurrence_id: int) -> int:
        """Count non-dropped rows on an occurrence."""
        return session.scalar(
            select(func.count(OccurrenceClaim.id)).where(
                OccurrenceClaim.occurrence_id == occurrence_id,
                OccurrenceClaim.status != STATUS_DROPPED,
            )
        ) or 0

    @staticmethod
    def count_by_status(session: Session, occurrence_id: int) -> Dict[str, int]:
        rows = session.execute(
            select(OccurrenceClaim.status, func.count(OccurrenceClaim.id))
            .where(OccurrenceClaim.occurrence_id == occurrence_id)
            .group_by(OccurrenceClaim.status)
        )
        return {status: count for status, count in rows}

    @staticmethod
    def open_vacancies(session: Session, occurrence_id: int) -> int:
        """Dropped rows not yet covered by a pick-up."""
        counts = ClaimRepository.count_by_status(session, occurrence_id)
        return max(0, counts.get(STATUS_DROPPED, 0) - counts.get(STATUS_PICKED_UP, 0))

    @staticmethod
    def active_user_ids(session: Session, occurrence_id: int) -> List[int]:
        return list(
            session.scalars(
                select(OccurrenceClaim.user_id)
                .where(
                    OccurrenceClaim.occurrence_id == occurrence_id,
                    OccurrenceClaim.status != STATUS_DROPPED,
                )
                .order_by(OccurrenceClaim.user_id)
            )
        )

    @staticmethod
    def delete_user_claims_for_slot(session: Session, slot_id: int, user_id: int) -> int:
        """Delete every occurrence-level row of a user across a slot. Returns number of deleted rows."""
        occurrence_ids = select(Occurrence.id).where(Occurrence.slot_id == slot_id)
        result = session.execute(
            delete(OccurrenceClaim)
            .where(OccurrenceClaim.user_id == user_id, OccurrenceClaim.occurrence_id.in_(occurrence_ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    @staticmethod
    def get_for_user(session: Session, user_id: int, period_id: int | None = None) -> List[OccurrenceClaim]:
        """Get a user's occurrence-level rows (optionally within one period) in chronological order."""
        stmt = (
            select(OccurrenceClaim)
            .join(Occurrence, OccurrenceClaim.occurrence_id == Occurrence.id)
            .where(OccurrenceClaim.user_id == user_id)
            .order_by(Occurrence.timestamp, OccurrenceClaim.id)
        )
        if period_id is not None:
            stmt = (
                stmt.join(RecurringSlot, Occurrence.slot_id == RecurringSlot.id)
                .join(Category, RecurringSlot.category_id == Category.id)
                .where(Category.period_id == period_id)
            )
        return list(session.scalars(stmt))
