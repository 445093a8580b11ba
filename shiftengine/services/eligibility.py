"""Eligibility gates: role requirements, period access, self-service and registration rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List

from shiftengine.domain.models import (
    ROLE_MODE_ALL,
    ROLE_MODE_ANY,
    ROLE_REQUIREMENT_MODES,
    Category,
    Period,
    RecurringSlot,
)
from shiftengine.errors import Forbidden, ValidationFailed
from shiftengine.services.timeplan import get_day_name, times_overlap


@dataclass(frozen=True)
class Identity:
    """Caller identity supplied by the external identity/role provider."""

    user_id: int
    role_ids: FrozenSet[int] = field(default_factory=frozenset)
    is_system_user: bool = False

    def __post_init__(self):
        object.__setattr__(self, "role_ids", frozenset(self.role_ids))


def validate_role_mode(mode: str) -> str:
    if mode not in ROLE_REQUIREMENT_MODES:
        raise ValidationFailed(
            f"roleRequirementMode must be one of {', '.join(ROLE_REQUIREMENT_MODES)}, got {mode!r}"
        )
    return mode


def meets_role_requirement(mode: str, required_role_ids: Iterable[int], role_ids: Iterable[int]) -> bool:
    """
    Pure role-requirement check.

    disabled -> always eligible; all -> role set is a superset of the required
    set; any -> role set intersects the required set (an empty required set
    admits everyone).
    """
    required = set(required_role_ids or ())
    held = set(role_ids or ())
    if mode == ROLE_MODE_ALL:
        return required <= held
    if mode == ROLE_MODE_ANY:
        return not required or bool(required & held)
    return True


def is_eligible(identity: Identity, category: Category) -> bool:
    if identity.is_system_user:
        return True
    return meets_role_requirement(category.role_requirement_mode, category.required_role_ids, identity.role_ids)


def assert_eligible(identity: Identity, category: Category) -> None:
    """Raise Forbidden unless the identity satisfies the category's role requirement."""
    if is_eligible(identity, category):
        return
    if category.role_requirement_mode == ROLE_MODE_ALL:
        raise Forbidden(
            "You do not have all the required roles for this shift type",
            category_id=category.id,
        )
    raise Forbidden(
        "You do not have any of the required roles for this shift type",
        category_id=category.id,
    )


def can_access_period(identity: Identity, period: Period) -> bool:
    if identity.is_system_user:
        return True
    allowed = set(period.allowed_role_ids or ())
    if not allowed:
        return True
    return bool(allowed & set(identity.role_ids))


def assert_can_access_period(identity: Identity, period: Period) -> None:
    if not can_access_period(identity, period):
        raise Forbidden("You do not have access to this period", period_id=period.id)


def assert_self_service(category: Category, action: str = "assignment") -> None:
    if not category.can_self_assign:
        raise Forbidden(
            f"Self-{action} is not allowed for this shift type. An administrator must do it for you.",
            category_id=category.id,
        )


def assert_no_time_overlap(target: RecurringSlot, registered: List[RecurringSlot]) -> None:
    """Reject a registration overlapping a slot the user already holds on the same weekday."""
    for existing in registered:
        if existing.id == target.id or existing.day_of_week != target.day_of_week:
            continue
        if times_overlap(existing.start_time, existing.end_time, target.start_time, target.end_time):
            raise ValidationFailed(
                "Cannot register for this shift schedule. It overlaps with another shift schedule you are "
                f"already registered for on {get_day_name(target.day_of_week)} "
                f"({existing.start_time:%H:%M} - {existing.end_time:%H:%M}).",
                slot_id=target.id,
                overlapping_slot_id=existing.id,
            )


def _is_full(slot: RecurringSlot, counts: Dict[int, int]) -> bool:
    return counts.get(slot.id, 0) >= slot.slot_capacity


def meets_balancing_requirement(
    target: RecurringSlot,
    category: Category,
    siblings: List[RecurringSlot],
    counts: Dict[int, int],
) -> bool:
    """
    A slot may accept another claim only if no other non-full slot in the
    balancing scope has fewer claims than it does.
    """
    if not category.is_balanced:
        return True
    return _balancing_violation(target, category, siblings, counts) is None


def _balancing_violation(target, category, siblings, counts) -> str | None:
    current = counts.get(target.id, 0)
    others = [s for s in siblings if s.id != target.id and not _is_full(s, counts)]

    if category.balanced_across_period:
        if any(counts.get(s.id, 0) < current for s in others):
            return (
                "Cannot register. All shift schedules in the period must be balanced "
                "(have equal or more slots filled) before you can register for this one."
            )
    if category.balanced_across_day:
        same_day = [s for s in others if s.day_of_week == target.day_of_week]
        if any(counts.get(s.id, 0) < current for s in same_day):
            return (
                f"Cannot register. All shift schedules on {get_day_name(target.day_of_week)} must be balanced "
                "(have equal or more slots filled) before you can register for this one."
            )
    if category.balanced_across_overlap:
        overlapping = [
            s for s in others
            if s.day_of_week == target.day_of_week
            and times_overlap(s.start_time, s.end_time, target.start_time, target.end_time)
        ]
        if any(counts.get(s.id, 0) < current for s in overlapping):
            return (
                "Cannot register. All overlapping shift schedules must be balanced "
                "(have equal or more slots filled) before you can register for this one."
            )
    return None


def assert_balanced(
    target: RecurringSlot,
    category: Category,
    siblings: List[RecurringSlot],
    counts: Dict[int, int],
) -> None:
    if not category.is_balanced:
        return
    message = _balancing_violation(target, category, siblings, counts)
    if message:
        raise ValidationFailed(message, slot_id=target.id)


__all__ = [
    "Identity",
    "validate_role_mode",
    "meets_role_requirement",
    "is_eligible",
    "assert_eligible",
    "can_access_period",
    "assert_can_access_period",
    "assert_self_service",
    "assert_no_time_overlap",
    "meets_balancing_requirement",
    "assert_balanced",
]
