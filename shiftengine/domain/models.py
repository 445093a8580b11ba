"""SQLAlchemy models for recurring shift scheduling."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


ROLE_MODE_DISABLED = "disabled"
ROLE_MODE_ALL = "all"
ROLE_MODE_ANY = "any"
ROLE_REQUIREMENT_MODES = (ROLE_MODE_DISABLED, ROLE_MODE_ALL, ROLE_MODE_ANY)

def _utc_now() -> datetime:
    """Naive UTC timestamp for audit columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


STATUS_ASSIGNED = "assigned"
STATUS_DROPPED = "dropped"
STATUS_PICKED_UP = "picked_up"
CLAIM_STATUSES = (STATUS_ASSIGNED, STATUS_DROPPED, STATUS_PICKED_UP)
ACTIVE_STATUSES = (STATUS_ASSIGNED, STATUS_PICKED_UP)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Period(Base):
    """Bounded date range with optional visibility, signup and modify windows."""

    __tablename__ = "periods"
    __table_args__ = (CheckConstraint("start < \"end\"", name="ck_period_range"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    start = Column(DateTime, nullable=False)
    end = Column(DateTime, nullable=False)
    visible_start = Column(DateTime, nullable=True)
    visible_end = Column(DateTime, nullable=True)
    signup_start = Column(DateTime, nullable=True)
    signup_end = Column(DateTime, nullable=True)
    modify_start = Column(DateTime, nullable=True)
    modify_end = Column(DateTime, nullable=True)
    allowed_role_ids = Column(JSON, nullable=False, default=list)  # empty = open to everyone

    categories = relationship(
        "Category", back_populates="period", cascade="all, delete-orphan", order_by="Category.id"
    )
    exceptions = relationship(
        "PeriodException", back_populates="period", cascade="all, delete-orphan",
        order_by="PeriodException.start",
    )

    def __repr__(self) -> str:
        return f"<Period(id={self.id}, name='{self.name}', start={self.start}, end={self.end})>"


class PeriodException(Base):
    """Blackout range inside a period (holidays, breaks); no occurrences are generated in it."""

    __tablename__ = "period_exceptions"
    __table_args__ = (CheckConstraint("start < \"end\"", name="ck_period_exception_range"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    period_id = Column(Integer, ForeignKey("periods.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False, default="")
    start = Column(DateTime, nullable=False)
    end = Column(DateTime, nullable=False)

    period = relationship("Period", back_populates="exceptions")

    def __repr__(self) -> str:
        return f"<PeriodException(id={self.id}, period={self.period_id}, start={self.start}, end={self.end})>"


class Category(Base):
    """A class of work within a period, with its role-requirement rule."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    period_id = Column(Integer, ForeignKey("periods.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    role_requirement_mode = Column(String(10), nullable=False, default=ROLE_MODE_DISABLED)
    required_role_ids = Column(JSON, nullable=False, default=list)
    can_self_assign = Column(Boolean, nullable=False, default=True)
    balanced_across_period = Column(Boolean, nullable=False, default=False)
    balanced_across_day = Column(Boolean, nullable=False, default=False)
    balanced_across_overlap = Column(Boolean, nullable=False, default=False)

    period = relationship("Period", back_populates="categories")
    slots = relationship(
        "RecurringSlot", back_populates="category", cascade="all, delete-orphan",
        order_by="RecurringSlot.id",
    )

    @property
    def is_balanced(self) -> bool:
        return bool(self.balanced_across_period or self.balanced_across_day or self.balanced_across_overlap)

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, period={self.period_id}, mode='{self.role_requirement_mode}')>"


class RecurringSlot(Base):
    """Weekly recurrence: weekday (0 = Sunday), wall-clock start/end, capacity."""

    __tablename__ = "recurring_slots"
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_slot_day_of_week"),
        CheckConstraint("slot_capacity >= 1", name="ck_slot_capacity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_capacity = Column(Integer, nullable=False, default=1)

    category = relationship("Category", back_populates="slots")
    occurrences = relationship(
        "Occurrence", back_populates="slot", cascade="all, delete-orphan", order_by="Occurrence.timestamp"
    )
    claims = relationship("SlotClaim", back_populates="slot", cascade="all, delete-orphan")

    @property
    def claimed_user_ids(self) -> List[int]:
        return sorted(claim.user_id for claim in self.claims)

    def __repr__(self) -> str:
        return (
            f"<RecurringSlot(id={self.id}, category={self.category_id}, day={self.day_of_week}, "
            f"{self.start_time}-{self.end_time}, capacity={self.slot_capacity})>"
        )


class Occurrence(Base):
    """A single dated instance of a recurring slot. Fully derived, never hand-edited."""

    __tablename__ = "occurrences"
    __table_args__ = (UniqueConstraint("slot_id", "timestamp", name="uq_occurrence_slot_timestamp"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    slot_id = Column(Integer, ForeignKey("recurring_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    slot = relationship("RecurringSlot", back_populates="occurrences")
    claims = relationship(
        "OccurrenceClaim", back_populates="occurrence", cascade="all, delete-orphan", order_by="OccurrenceClaim.id"
    )

    def __repr__(self) -> str:
        return f"<Occurrence(id={self.id}, slot={self.slot_id}, timestamp={self.timestamp})>"


class SlotClaim(Base):
    """A user's standing claim on a recurring slot."""

    __tablename__ = "slot_claims"
    __table_args__ = (UniqueConstraint("slot_id", "user_id", name="uq_slot_claim_slot_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    slot_id = Column(Integer, ForeignKey("recurring_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=_utc_now)

    slot = relationship("RecurringSlot", back_populates="claims")

    def __repr__(self) -> str:
        return f"<SlotClaim(id={self.id}, slot={self.slot_id}, user={self.user_id})>"


class OccurrenceClaim(Base):
    """Per-occurrence status record: assigned, dropped or picked_up."""

    __tablename__ = "occurrence_claims"
    __table_args__ = (
        CheckConstraint(
            "status IN ('assigned', 'dropped', 'picked_up')", name="ck_occurrence_claim_status"
        ),
        # At most one non-dropped row per (occurrence, user)
        Index(
            "uq_occurrence_claim_active",
            "occurrence_id",
            "user_id",
            unique=True,
            sqlite_where=text("status <> 'dropped'"),
            postgresql_where=text("status <> 'dropped'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    occurrence_id = Column(Integer, ForeignKey("occurrences.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    status = Column(String(16), nullable=False, default=STATUS_ASSIGNED)
    created_at = Column(DateTime, nullable=False, default=_utc_now)
    updated_at = Column(DateTime, nullable=False, default=_utc_now, onupdate=_utc_now)

    occurrence = relationship("Occurrence", back_populates="claims")

    @property
    def is_active(self) -> bool:
        return self.status != STATUS_DROPPED

    def __repr__(self) -> str:
        return f"<OccurrenceClaim(id={self.id}, occurrence={self.occurrence_id}, user={self.user_id}, status='{self.status}')>"
