"""Administrative CRUD for periods, exceptions, categories and slots.

Edits that change when occurrences fall (period bounds, blackout ranges, a
category moving period, a slot's weekday/time) regenerate the affected slots
in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from shiftengine.domain.models import Category, Period, PeriodException, RecurringSlot
from shiftengine.domain.repositories import (
    CategoryRepository,
    ClaimRepository,
    PeriodRepository,
    SlotRepository,
)
from shiftengine.errors import NotFound, ValidationFailed
from shiftengine.services.eligibility import validate_role_mode
from shiftengine.services.timeplan import get_day_name, validate_day_of_week, validate_time_range
from shiftengine.services.windows import validate_period_bounds

from .generation import GenerationReport, OccurrenceGenerator

logger = logging.getLogger(__name__)

PERIOD_FIELDS = (
    "name",
    "start",
    "end",
    "visible_start",
    "visible_end",
    "signup_start",
    "signup_end",
    "modify_start",
    "modify_end",
    "allowed_role_ids",
)
CATEGORY_FIELDS = (
    "name",
    "period_id",
    "role_requirement_mode",
    "required_role_ids",
    "can_self_assign",
    "balanced_across_period",
    "balanced_across_day",
    "balanced_across_overlap",
)
SLOT_FIELDS = ("category_id", "day_of_week", "start_time", "end_time", "slot_capacity")


@dataclass(frozen=True)
class SlotDefinition:
    """Weekday and wall-clock range of a slot to create."""

    day_of_week: int
    start_time: str
    end_time: str


def _check_fields(changes: dict, allowed: Sequence[str], entity: str) -> None:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise ValidationFailed(f"Unknown {entity} field(s): {', '.join(unknown)}")


def _validate_capacity(slot_capacity) -> int:
    if not isinstance(slot_capacity, int) or isinstance(slot_capacity, bool) or slot_capacity < 1:
        raise ValidationFailed(f"slotCapacity must be an integer >= 1, got {slot_capacity!r}")
    return slot_capacity


def _role_ids(values: Optional[Iterable[int]]) -> List[int]:
    return sorted({int(v) for v in (values or ())})


class AdminEngine:
    """Period, exception, category and slot management."""

    def __init__(self, generator: Optional[OccurrenceGenerator] = None):
        self.generator = generator or OccurrenceGenerator()

    # ------------------------------------------------------------------ periods

    def get_period(self, session: Session, period_id: int) -> Period:
        period = PeriodRepository.get_by_id(session, period_id)
        if period is None:
            raise NotFound("Period not found", period_id=period_id)
        return period

    def create_period(
        self,
        session: Session,
        name: str,
        start: datetime,
        end: datetime,
        visible_start: Optional[datetime] = None,
        visible_end: Optional[datetime] = None,
        signup_start: Optional[datetime] = None,
        signup_end: Optional[datetime] = None,
        modify_start: Optional[datetime] = None,
        modify_end: Optional[datetime] = None,
        allowed_role_ids: Optional[Iterable[int]] = None,
    ) -> Period:
        """
        Create a period.

        Raises:
            ValidationFailed: If start >= end or a configured window is inverted
        """
        validate_period_bounds(
            start, end,
            visible=(visible_start, visible_end),
            signup=(signup_start, signup_end),
            modify=(modify_start, modify_end),
        )
        period = Period(
            name=name,
            start=start,
            end=end,
            visible_start=visible_start,
            visible_end=visible_end,
            signup_start=signup_start,
            signup_end=signup_end,
            modify_start=modify_start,
            modify_end=modify_end,
            allowed_role_ids=_role_ids(allowed_role_ids),
        )
        session.add(period)
        session.flush()
        logger.info("Created period %s '%s' [%s, %s)", period.id, name, start, end)
        return period

    def update_period(self, session: Session, period_id: int, **changes) -> Tuple[Period, Optional[GenerationReport]]:
        """
        Update period fields; a change of start or end regenerates every slot of the period.

        Returns:
            Tuple of (period, GenerationReport or None when nothing was regenerated)
        """
        _check_fields(changes, PERIOD_FIELDS, "period")
        period = self.get_period(session, period_id)

        merged = {field: changes.get(field, getattr(period, field)) for field in PERIOD_FIELDS}
        validate_period_bounds(
            merged["start"], merged["end"],
            visible=(merged["visible_start"], merged["visible_end"]),
            signup=(merged["signup_start"], merged["signup_end"]),
            modify=(merged["modify_start"], merged["modify_end"]),
        )
        range_changed = merged["start"] != period.start or merged["end"] != period.end

        if "allowed_role_ids" in changes:
            changes["allowed_role_ids"] = _role_ids(changes["allowed_role_ids"])
        for field, value in changes.items():
            setattr(period, field, value)
        session.flush()

        report = None
        if range_changed:
            report = self.generator.generate_for_period(session, period)
        logger.info("Updated period %s (%s)", period.id, ", ".join(sorted(changes)) or "no changes")
        return period, report

    def delete_period(self, session: Session, period_id: int) -> None:
        period = self.get_period(session, period_id)
        session.delete(period)
        session.flush()
        logger.info("Deleted period %s", period_id)

    # --------------------------------------------------------------- exceptions

    @staticmethod
    def _validate_exception(start: datetime, end: datetime) -> None:
        if start is None or end is None:
            raise ValidationFailed("Exception start and end are required")
        if start >= end:
            raise ValidationFailed("Exception start must be before exception end")

    def create_exception(
        self, session: Session, period_id: int, name: str, start: datetime, end: datetime
    ) -> Tuple[PeriodException, GenerationReport]:
        """Add a blackout range and regenerate the period without it."""
        period = self.get_period(session, period_id)
        self._validate_exception(start, end)
        exception = PeriodException(period_id=period.id, name=name, start=start, end=end)
        session.add(exception)
        session.flush()
        logger.info("Created exception %s on period %s [%s, %s]", exception.id, period.id, start, end)
        return exception, self.generator.generate_for_period(session, period)

    def update_exception(self, session: Session, exception_id: int, **changes) -> Tuple[PeriodException, GenerationReport]:
        _check_fields(changes, ("name", "start", "end"), "exception")
        exception = PeriodRepository.get_exception(session, exception_id)
        if exception is None:
            raise NotFound("Period exception not found", exception_id=exception_id)
        period = self.get_period(session, exception.period_id)
        self._validate_exception(changes.get("start", exception.start), changes.get("end", exception.end))
        for field, value in changes.items():
            setattr(exception, field, value)
        session.flush()
        return exception, self.generator.generate_for_period(session, period)

    def delete_exception(self, session: Session, exception_id: int) -> GenerationReport:
        exception = PeriodRepository.get_exception(session, exception_id)
        if exception is None:
            raise NotFound("Period exception not found", exception_id=exception_id)
        period = self.get_period(session, exception.period_id)
        session.delete(exception)
        session.flush()
        session.expire(period, ["exceptions"])
        logger.info("Deleted exception %s from period %s", exception_id, period.id)
        return self.generator.generate_for_period(session, period)

    # --------------------------------------------------------------- categories

    def get_category(self, session: Session, category_id: int) -> Category:
        category = CategoryRepository.get_by_id(session, category_id)
        if category is None:
            raise NotFound("Shift type not found", category_id=category_id)
        return category

    def create_category(
        self,
        session: Session,
        period_id: int,
        name: str = "",
        role_requirement_mode: str = "disabled",
        required_role_ids: Optional[Iterable[int]] = None,
        can_self_assign: bool = True,
        balanced_across_period: bool = False,
        balanced_across_day: bool = False,
        balanced_across_overlap: bool = False,
    ) -> Category:
        period = self.get_period(session, period_id)
        category = Category(
            period_id=period.id,
            name=name,
            role_requirement_mode=validate_role_mode(role_requirement_mode),
            required_role_ids=_role_ids(required_role_ids),
            can_self_assign=can_self_assign,
            balanced_across_period=balanced_across_period,
            balanced_across_day=balanced_across_day,
            balanced_across_overlap=balanced_across_overlap,
        )
        session.add(category)
        session.flush()
        logger.info("Created category %s '%s' in period %s (mode=%s)", category.id, name, period.id,
                    category.role_requirement_mode)
        return category

    def update_category(
        self, session: Session, category_id: int, **changes
    ) -> Tuple[Category, Optional[GenerationReport]]:
        """
        Update category fields. A new period_id moves the category and
        regenerates its slots in the new range.

        Returns:
            Tuple of (category, GenerationReport or None)
        """
        _check_fields(changes, CATEGORY_FIELDS, "category")
        category = self.get_category(session, category_id)

        new_period_id = changes.pop("period_id", category.period_id)
        if "role_requirement_mode" in changes:
            validate_role_mode(changes["role_requirement_mode"])
        if "required_role_ids" in changes:
            changes["required_role_ids"] = _role_ids(changes["required_role_ids"])
        for field, value in changes.items():
            setattr(category, field, value)
        session.flush()

        report = None
        if new_period_id != category.period_id:
            new_period = self.get_period(session, new_period_id)
            report = self.generator.regenerate_for_category_move(session, category, new_period)
        return category, report

    def delete_category(self, session: Session, category_id: int) -> None:
        category = self.get_category(session, category_id)
        session.delete(category)
        session.flush()
        logger.info("Deleted category %s", category_id)

    # -------------------------------------------------------------------- slots

    def get_slot(self, session: Session, slot_id: int) -> RecurringSlot:
        slot = SlotRepository.get_by_id(session, slot_id)
        if slot is None:
            raise NotFound("Shift schedule not found", slot_id=slot_id)
        return slot

    def create_slot(
        self,
        session: Session,
        category_id: int,
        day_of_week: int,
        start_time,
        end_time,
        slot_capacity: int = 1,
    ) -> Tuple[RecurringSlot, GenerationReport]:
        """
        Create a recurring slot and materialize its occurrences.

        Raises:
            ValidationFailed: On bad weekday/time/capacity, or when the slot
                would produce no occurrence inside its period
        """
        category = self.get_category(session, category_id)
        period = self.get_period(session, category.period_id)
        validate_day_of_week(day_of_week)
        start_t, end_t = validate_time_range(start_time, end_time)
        _validate_capacity(slot_capacity)

        slot = RecurringSlot(
            category_id=category.id,
            day_of_week=day_of_week,
            start_time=start_t,
            end_time=end_t,
            slot_capacity=slot_capacity,
        )
        if not self.generator.expected_timestamps(slot, period):
            raise ValidationFailed(
                f"No {get_day_name(day_of_week)} at {start_t:%H:%M} falls inside period {period.id}",
                category_id=category.id,
                day_of_week=day_of_week,
            )
        session.add(slot)
        session.flush()
        report = self.generator.regenerate_for_slot(session, slot, period, delete_if_empty=False)
        logger.info("Created slot %s: %s %s-%s x%d", slot.id, get_day_name(day_of_week), start_t, end_t,
                    slot_capacity)
        return slot, report

    def bulk_create_slots(
        self,
        session: Session,
        category_ids: Sequence[int],
        definitions: Sequence[SlotDefinition],
        slot_capacity: int = 1,
    ) -> List[RecurringSlot]:
        """
        Create every (category, definition) combination, skipping ones that
        already exist with the same weekday and start time.

        Returns:
            Newly created slots
        """
        if not category_ids or not definitions:
            raise ValidationFailed("At least one category and one slot definition are required")
        _validate_capacity(slot_capacity)
        categories = [self.get_category(session, category_id) for category_id in category_ids]

        created = []
        for category in categories:
            existing = {(s.day_of_week, s.start_time) for s in SlotRepository.get_by_category(session, category.id)}
            for definition in definitions:
                start_t, _ = validate_time_range(definition.start_time, definition.end_time)
                key = (definition.day_of_week, start_t)
                if key in existing:
                    logger.info("Category %s already has a %s %s slot; skipping", category.id,
                                get_day_name(definition.day_of_week), start_t)
                    continue
                slot, _ = self.create_slot(
                    session,
                    category.id,
                    definition.day_of_week,
                    definition.start_time,
                    definition.end_time,
                    slot_capacity,
                )
                existing.add(key)
                created.append(slot)
        logger.info("Bulk-created %d slot(s) across %d category(ies)", len(created), len(categories))
        return created

    def update_slot(
        self, session: Session, slot_id: int, **changes
    ) -> Tuple[Optional[RecurringSlot], Optional[GenerationReport]]:
        """
        Update slot fields.

        A weekday, time or category change regenerates the slot's occurrences;
        if that leaves none, the slot is deleted and None is returned in its place.

        Raises:
            ValidationFailed: If slot_capacity drops below the current claim count
        """
        _check_fields(changes, SLOT_FIELDS, "slot")
        slot = SlotRepository.get_for_update(session, slot_id)
        if slot is None:
            raise NotFound("Shift schedule not found", slot_id=slot_id)

        if "day_of_week" in changes:
            validate_day_of_week(changes["day_of_week"])
        start_t, end_t = validate_time_range(
            changes.get("start_time", slot.start_time), changes.get("end_time", slot.end_time)
        )
        if "slot_capacity" in changes:
            _validate_capacity(changes["slot_capacity"])
            claimed = ClaimRepository.count_slot_claims(session, slot.id)
            if changes["slot_capacity"] < claimed:
                raise ValidationFailed(
                    f"Cannot lower capacity to {changes['slot_capacity']}; {claimed} user(s) are registered",
                    slot_id=slot.id,
                )
        if "category_id" in changes:
            self.get_category(session, changes["category_id"])

        temporal = (
            changes.get("day_of_week", slot.day_of_week) != slot.day_of_week
            or start_t != slot.start_time
            or end_t != slot.end_time
            or changes.get("category_id", slot.category_id) != slot.category_id
        )

        for field, value in changes.items():
            setattr(slot, field, value)
        slot.start_time, slot.end_time = start_t, end_t
        session.flush()

        if not temporal:
            return slot, None
        session.expire(slot, ["category"])
        report = self.generator.regenerate_for_slot(session, slot)
        if report.slots_deleted:
            return None, report
        return slot, report

    def delete_slot(self, session: Session, slot_id: int) -> None:
        slot = self.get_slot(session, slot_id)
        session.delete(slot)
        session.flush()
        logger.info("Deleted slot %s", slot_id)
