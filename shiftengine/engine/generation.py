"""Occurrence generation: expand weekly recurring slots into dated occurrences.

Regeneration is always a full delete-then-recreate per slot, run inside the
triggering transaction so no reader sees a slot without occurrences. Claim
rows on surviving timestamps are carried over to the recreated occurrences.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from shiftengine.domain.models import Category, Period, RecurringSlot
from shiftengine.domain.repositories import OccurrenceRepository, PeriodRepository, SlotRepository
from shiftengine.errors import NotFound
from shiftengine.services.timeplan import WEEKLY_ANCHORS, parse_time_string, validate_day_of_week

from .fanout import refan_slot_claims

logger = logging.getLogger(__name__)

ExceptionWindow = Tuple[datetime, datetime]


def occurrence_timestamps(
    period_start: datetime,
    period_end: datetime,
    day_of_week: int,
    start_time: time | str,
) -> List[datetime]:
    """
    Every date-time in [period_start, period_end) falling on the weekday at the slot's start time.

    Args:
        period_start: Inclusive lower bound
        period_end: Exclusive upper bound
        day_of_week: 0 = Sunday ... 6 = Saturday
        start_time: Wall-clock start of the slot

    Returns:
        Sorted, de-duplicated list (empty if no matching weekday is in range)
    """
    validate_day_of_week(day_of_week)
    if period_start is None or period_end is None or period_start >= period_end:
        return []

    start_t = parse_time_string(start_time)
    offset = pd.Timedelta(hours=start_t.hour, minutes=start_t.minute, seconds=start_t.second)
    days = pd.date_range(
        start=pd.Timestamp(period_start).normalize(),
        end=pd.Timestamp(period_end).normalize(),
        freq=WEEKLY_ANCHORS[day_of_week],
    )
    stamps = {(day + offset).to_pydatetime() for day in days}
    return sorted(ts for ts in stamps if period_start <= ts < period_end)


def filter_exception_periods(timestamps: Iterable[datetime], exceptions: Sequence[ExceptionWindow]) -> List[datetime]:
    """Drop timestamps inside any blackout range (bounds inclusive)."""
    if not exceptions:
        return list(timestamps)
    return [ts for ts in timestamps if not any(start <= ts <= end for start, end in exceptions)]


@dataclass
class GenerationReport:
    """Outcome of a (re)generation pass."""

    slots_regenerated: List[int] = field(default_factory=list)
    slots_deleted: List[int] = field(default_factory=list)
    occurrences_created: int = 0
    claims_refanned: int = 0

    def merge(self, other: "GenerationReport") -> "GenerationReport":
        self.slots_regenerated.extend(other.slots_regenerated)
        self.slots_deleted.extend(other.slots_deleted)
        self.occurrences_created += other.occurrences_created
        self.claims_refanned += other.claims_refanned
        return self


class OccurrenceGenerator:
    """Materializes and regenerates occurrences for slots, categories and periods."""

    def expected_timestamps(
        self,
        slot: RecurringSlot,
        period: Period,
        exceptions: Optional[Sequence[ExceptionWindow]] = None,
    ) -> List[datetime]:
        """Pure expansion of one slot over one period, blackout ranges removed."""
        if exceptions is None:
            exceptions = [(exc.start, exc.end) for exc in period.exceptions]
        stamps = occurrence_timestamps(period.start, period.end, slot.day_of_week, slot.start_time)
        return filter_exception_periods(stamps, exceptions)

    def regenerate_for_slot(
        self,
        session: Session,
        slot: RecurringSlot,
        period: Optional[Period] = None,
        delete_if_empty: bool = True,
        exceptions: Optional[Sequence[ExceptionWindow]] = None,
    ) -> GenerationReport:
        """
        Replace all occurrences of one slot and re-fan its standing claims.

        Args:
            session: Database session inside the triggering transaction
            slot: Slot to regenerate
            period: Governing period (default: the slot's category's period)
            delete_if_empty: Delete the slot itself when it yields no occurrences
            exceptions: Pre-loaded blackout ranges of the period

        Returns:
            GenerationReport for this slot
        """
        report = GenerationReport()
        if period is None:
            category = session.get(Category, slot.category_id)
            if category is None:
                raise NotFound(f"Category {slot.category_id} not found", category_id=slot.category_id)
            period = PeriodRepository.get_by_id(session, category.period_id)
            if period is None:
                raise NotFound(f"Period {category.period_id} not found", period_id=category.period_id)

        timestamps = self.expected_timestamps(slot, period, exceptions)

        if not timestamps and delete_if_empty:
            claims = len(slot.claims)
            if claims:
                logger.warning(
                    "Slot %s produces no occurrences in period %s; deleting it with %d standing claim(s)",
                    slot.id, period.id, claims,
                )
            else:
                logger.info("Slot %s produces no occurrences in period %s; deleting it", slot.id, period.id)
            report.slots_deleted.append(slot.id)
            session.delete(slot)
            session.flush()
            return report

        fresh = OccurrenceRepository.replace_for_slot(session, slot, timestamps)
        report.slots_regenerated.append(slot.id)
        report.occurrences_created += len(fresh)
        report.claims_refanned += refan_slot_claims(session, slot)
        logger.info(
            "Regenerated slot %s: %d occurrence(s), %d claim row(s) re-fanned",
            slot.id, len(fresh), report.claims_refanned,
        )
        return report

    def _regenerate_slots(self, session: Session, slots: List[RecurringSlot], period: Period) -> GenerationReport:
        exceptions = [(exc.start, exc.end) for exc in PeriodRepository.get_exceptions(session, period.id)]
        report = GenerationReport()
        for slot in slots:
            report.merge(self.regenerate_for_slot(session, slot, period, exceptions=exceptions))
        return report

    def generate_for_period(self, session: Session, period: Period) -> GenerationReport:
        """Regenerate every slot under every category of the period."""
        slots = SlotRepository.get_by_period(session, period.id)
        report = self._regenerate_slots(session, slots, period)
        logger.info(
            "Period %s: regenerated %d slot(s), deleted %d, created %d occurrence(s)",
            period.id, len(report.slots_regenerated), len(report.slots_deleted), report.occurrences_created,
        )
        return report

    def regenerate_for_category_move(self, session: Session, category: Category, new_period: Period) -> GenerationReport:
        """
        Move a category to another period and regenerate its slots in the new range.

        Slots producing zero occurrences in the new range are deleted.
        """
        category.period_id = new_period.id
        session.flush()
        session.expire(category, ["period"])
        slots = SlotRepository.get_by_category(session, category.id)
        report = self._regenerate_slots(session, slots, new_period)
        logger.info(
            "Category %s moved to period %s: %d slot(s) regenerated, %d deleted",
            category.id, new_period.id, len(report.slots_regenerated), len(report.slots_deleted),
        )
        return report

