"""Domain models and data access layer."""

from .models import (
    Base,
    Category,
    Occurrence,
    OccurrenceClaim,
    Period,
    PeriodException,
    RecurringSlot,
    SlotClaim,
)
from .repositories import (
    CategoryRepository,
    ClaimRepository,
    OccurrenceRepository,
    PeriodRepository,
    SlotRepository,
)

__all__ = [
    "Base",
    "Period",
    "PeriodException",
    "Category",
    "RecurringSlot",
    "Occurrence",
    "SlotClaim",
    "OccurrenceClaim",
    "PeriodRepository",
    "CategoryRepository",
    "SlotRepository",
    "OccurrenceRepository",
    "ClaimRepository",
]
