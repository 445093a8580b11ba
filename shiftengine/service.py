"""Transactional facade over the scheduling engines.

Every mutating call runs as one unit:

    in-process key locks -> transaction (commit / rollback) -> engine work
    -> deadline check -> commit -> release locks -> publish event

Conflicts (lock timeouts, busy database, exceeded deadline) are retried with
backoff; every other failure surfaces immediately with nothing committed.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Hashable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from shiftengine.config import ShiftEngineConfig
from shiftengine.domain.db import get_session_factory, init_database, transaction_scope
from shiftengine.domain.models import (
    Category,
    Occurrence,
    OccurrenceClaim,
    Period,
    PeriodException,
    RecurringSlot,
    SlotClaim,
)
from shiftengine.domain.repositories import PeriodRepository, SlotRepository
from shiftengine.engine import (
    AdminEngine,
    ExchangeEngine,
    GenerationReport,
    OccurrenceGenerator,
    RegistrationEngine,
    RosterEntry,
    SlotAvailability,
    SlotDefinition,
    list_for_registration,
    list_occurrences_for_user,
    occurrence_roster,
)
from shiftengine.errors import NotFound
from shiftengine.events import EventDispatcher, ScheduleEvent, Subscriber
from shiftengine.io.import_csv import import_schedule_frame, read_schedule_csv
from shiftengine.locking import (
    DEFAULT_LOCKS,
    Deadline,
    KeyedLockRegistry,
    apply_session_timeouts,
    run_with_retry,
    translate_db_errors,
)
from shiftengine.services.eligibility import Identity

logger = logging.getLogger(__name__)

T = TypeVar("T")


def slot_key(slot_id: int) -> Tuple[str, int]:
    return ("slot", slot_id)


def occurrence_key(occurrence_id: int) -> Tuple[str, int]:
    return ("occurrence", occurrence_id)


def category_key(category_id: int) -> Tuple[str, int]:
    return ("category", category_id)


class SchedulingService:
    """
    Entry point for registration, drop/pick-up, administration and reads.

    Args:
        session_factory: sessionmaker bound to the schedule database
        config: Timeouts, retry policy and timezone
        dispatcher: Receives events after commit
        clock: Returns "now" as a naive wall-clock datetime in the facility timezone
        locks: Registry of in-process key locks shared by every worker thread
        sleep: Used between retries
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        config: Optional[ShiftEngineConfig] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: KeyedLockRegistry = DEFAULT_LOCKS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.config = config or ShiftEngineConfig()
        self.dispatcher = dispatcher or EventDispatcher()
        self.clock = clock or self._wall_clock
        self.locks = locks
        self._sleep = sleep

        self.generator = OccurrenceGenerator()
        self.registration = RegistrationEngine()
        self.exchange = ExchangeEngine()
        self.admin = AdminEngine(self.generator)

    @classmethod
    def from_config(cls, config: ShiftEngineConfig, **kwargs) -> "SchedulingService":
        """Create tables if needed and build a service on the configured database."""
        engine = init_database(config.database_url)
        return cls(get_session_factory(engine=engine), config=config, **kwargs)

    def _wall_clock(self) -> datetime:
        return datetime.now(self.config.tz).replace(tzinfo=None)

    def now(self) -> datetime:
        return self.clock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        return self.dispatcher.subscribe(subscriber)

    # ---------------------------------------------------------------- plumbing

    def _transaction(self, operation: str, work: Callable[[Session], T], keys: Iterable[Hashable] = ()) -> T:
        """Run work(session) in one transaction under the given key locks, retrying on Conflict."""
        keys = list(keys)

        def attempt() -> T:
            deadline = Deadline(self.config.transaction_timeout_seconds)
            lock_wait = min(self.config.lock_timeout_seconds, deadline.remaining())
            with self.locks.hold_many(keys, timeout=lock_wait):
                with translate_db_errors(operation):
                    with transaction_scope(self.session_factory) as session:
                        apply_session_timeouts(
                            session, self.config.lock_timeout_seconds, self.config.transaction_timeout_seconds
                        )
                        result = work(session)
                        deadline.check(operation)
                    return result

        return run_with_retry(
            attempt,
            max_retries=self.config.max_retries,
            backoff_seconds=self.config.retry_backoff_seconds,
            operation=operation,
            sleep=self._sleep,
        )

    def _mutate(
        self,
        operation: str,
        work: Callable[[Session], Tuple[T, ScheduleEvent]],
        keys: Iterable[Hashable] = (),
    ) -> T:
        result, event = self._transaction(operation, work, keys)
        logger.debug("%s committed; publishing %s event", operation, event.type)
        self.dispatcher.publish(event)
        return result

    def _read(self, operation: str, work: Callable[[Session], T]) -> T:
        with translate_db_errors(operation):
            with self.session_factory() as session:
                return work(session)

    def _slot_keys_for_period(self, period_id: int) -> List[Tuple[str, int]]:
        return self._read(
            "lock planning",
            lambda s: [slot_key(slot.id) for slot in SlotRepository.get_by_period(s, period_id)],
        )

    def _slot_keys_for_category(self, category_id: int) -> List[Tuple[str, int]]:
        keys = self._read(
            "lock planning",
            lambda s: [slot_key(slot.id) for slot in SlotRepository.get_by_category(s, category_id)],
        )
        return keys + [category_key(category_id)]

    def _occurrence_keys(self, occurrence_id: int) -> List[Tuple[str, int]]:
        slot_id = self._read(
            "lock planning",
            lambda s: s.scalar(select(Occurrence.slot_id).where(Occurrence.id == occurrence_id)),
        )
        keys = [occurrence_key(occurrence_id)]
        if slot_id is not None:
            keys.append(slot_key(slot_id))
        return keys

    # -------------------------------------------------------------- generation

    def generate_occurrences(self, period_id: int) -> GenerationReport:
        """Regenerate every slot of a period from scratch."""

        def work(session: Session) -> GenerationReport:
            period = self.admin.get_period(session, period_id)
            return self.generator.generate_for_period(session, period)

        return self._transaction("generate occurrences", work, self._slot_keys_for_period(period_id))

    def regenerate_for_slot(self, slot_id: int) -> GenerationReport:
        def work(session: Session) -> GenerationReport:
            slot = SlotRepository.get_for_update(session, slot_id)
            if slot is None:
                raise NotFound("Shift schedule not found", slot_id=slot_id)
            return self.generator.regenerate_for_slot(session, slot)

        return self._transaction("regenerate slot", work, [slot_key(slot_id)])

    def regenerate_for_category_move(self, category_id: int, new_period_id: int) -> GenerationReport:
        """Move a category to another period, regenerating (or deleting) its slots."""

        def work(session: Session) -> GenerationReport:
            category = self.admin.get_category(session, category_id)
            new_period = self.admin.get_period(session, new_period_id)
            return self.generator.regenerate_for_category_move(session, category, new_period)

        return self._transaction("move category", work, self._slot_keys_for_category(category_id))

    # ------------------------------------------------------------ registration

    def register(self, slot_id: int, identity: Identity) -> SlotClaim:
        """Self-register for a recurring slot. Returns the new SlotClaim."""
        return self._mutate(
            "register",
            lambda s: self.registration.register(s, slot_id, identity, self.now()),
            [slot_key(slot_id)],
        )

    def unregister(self, slot_id: int, identity: Identity) -> SlotClaim:
        """Self-unregister from a recurring slot. Returns the deleted SlotClaim."""
        return self._mutate(
            "unregister",
            lambda s: self.registration.unregister(s, slot_id, identity, self.now()),
            [slot_key(slot_id)],
        )

    def force_register(self, slot_id: int, target: Identity, actor: Optional[Identity] = None) -> SlotClaim:
        return self._mutate(
            "force register",
            lambda s: self.registration.force_register(s, slot_id, target, self.now(), actor),
            [slot_key(slot_id)],
        )

    def force_unregister(self, slot_id: int, user_id: int, actor: Optional[Identity] = None) -> SlotClaim:
        return self._mutate(
            "force unregister",
            lambda s: self.registration.force_unregister(s, slot_id, user_id, self.now(), actor),
            [slot_key(slot_id)],
        )

    def drop_occurrence(self, occurrence_id: int, identity: Identity) -> OccurrenceClaim:
        """Drop one occurrence. Returns the row now marked dropped."""
        return self._mutate(
            "drop",
            lambda s: self.exchange.drop(s, occurrence_id, identity, self.now()),
            self._occurrence_keys(occurrence_id),
        )

    def pickup_occurrence(self, occurrence_id: int, identity: Identity) -> OccurrenceClaim:
        """Pick up a vacancy on one occurrence. Returns the new picked_up row."""
        return self._mutate(
            "pickup",
            lambda s: self.exchange.pickup(s, occurrence_id, identity, self.now()),
            self._occurrence_keys(occurrence_id),
        )

    # ------------------------------------------------------------------- admin

    def create_period(self, name: str, start: datetime, end: datetime, **windows) -> Period:
        return self._transaction("create period", lambda s: self.admin.create_period(s, name, start, end, **windows))

    def update_period(self, period_id: int, **changes) -> Tuple[Period, Optional[GenerationReport]]:
        return self._transaction(
            "update period",
            lambda s: self.admin.update_period(s, period_id, **changes),
            self._slot_keys_for_period(period_id),
        )

    def delete_period(self, period_id: int) -> None:
        self._transaction(
            "delete period", lambda s: self.admin.delete_period(s, period_id), self._slot_keys_for_period(period_id)
        )

    def create_exception(
        self, period_id: int, name: str, start: datetime, end: datetime
    ) -> Tuple[PeriodException, GenerationReport]:
        return self._transaction(
            "create exception",
            lambda s: self.admin.create_exception(s, period_id, name, start, end),
            self._slot_keys_for_period(period_id),
        )

    def update_exception(self, exception_id: int, **changes) -> Tuple[PeriodException, GenerationReport]:
        period_id = self._exception_period_id(exception_id)
        return self._transaction(
            "update exception",
            lambda s: self.admin.update_exception(s, exception_id, **changes),
            self._slot_keys_for_period(period_id) if period_id is not None else (),
        )

    def delete_exception(self, exception_id: int) -> GenerationReport:
        period_id = self._exception_period_id(exception_id)
        return self._transaction(
            "delete exception",
            lambda s: self.admin.delete_exception(s, exception_id),
            self._slot_keys_for_period(period_id) if period_id is not None else (),
        )

    def _exception_period_id(self, exception_id: int) -> Optional[int]:
        def work(session: Session) -> Optional[int]:
            exception = PeriodRepository.get_exception(session, exception_id)
            return exception.period_id if exception is not None else None

        return self._read("lock planning", work)

    def create_category(self, period_id: int, **fields) -> Category:
        return self._transaction("create category", lambda s: self.admin.create_category(s, period_id, **fields))

    def update_category(self, category_id: int, **changes) -> Tuple[Category, Optional[GenerationReport]]:
        return self._transaction(
            "update category",
            lambda s: self.admin.update_category(s, category_id, **changes),
            self._slot_keys_for_category(category_id),
        )

    def delete_category(self, category_id: int) -> None:
        self._transaction(
            "delete category",
            lambda s: self.admin.delete_category(s, category_id),
            self._slot_keys_for_category(category_id),
        )

    def create_slot(
        self, category_id: int, day_of_week: int, start_time, end_time, slot_capacity: int = 1
    ) -> RecurringSlot:
        slot, _ = self._transaction(
            "create slot",
            lambda s: self.admin.create_slot(s, category_id, day_of_week, start_time, end_time, slot_capacity),
            [category_key(category_id)],
        )
        return slot

    def bulk_create_slots(
        self, category_ids: Sequence[int], definitions: Sequence[SlotDefinition], slot_capacity: int = 1
    ) -> List[RecurringSlot]:
        return self._transaction(
            "bulk create slots",
            lambda s: self.admin.bulk_create_slots(s, category_ids, definitions, slot_capacity),
            [category_key(category_id) for category_id in category_ids],
        )

    def import_slots_csv(self, csv_path: str | Path) -> int:
        """
        Import slot definitions from CSV in one transaction.

        The file is read and checked before any lock is taken; the import then
        holds the lock of every category it names.
        """
        df = read_schedule_csv(csv_path)
        keys = [category_key(int(category_id)) for category_id in sorted(df["category_id"].unique())]
        created = self._transaction("import slots", lambda s: import_schedule_frame(s, df, self.admin), keys)
        logger.info("Imported %d slot(s) from %s (%d row(s))", created, csv_path, len(df))
        return created

    def update_slot(self, slot_id: int, **changes) -> Tuple[Optional[RecurringSlot], Optional[GenerationReport]]:
        return self._transaction(
            "update slot", lambda s: self.admin.update_slot(s, slot_id, **changes), [slot_key(slot_id)]
        )

    def delete_slot(self, slot_id: int) -> None:
        self._transaction("delete slot", lambda s: self.admin.delete_slot(s, slot_id), [slot_key(slot_id)])

    # ------------------------------------------------------------------- reads

    def list_for_registration(
        self, period_id: int, identity: Identity, day_of_week: Optional[int] = None
    ) -> List[SlotAvailability]:
        return self._read(
            "list for registration",
            lambda s: list_for_registration(s, period_id, identity, self.now(), day_of_week),
        )

    def list_occurrences_for_user(
        self, user_id: int, period_id: Optional[int] = None, include_dropped: bool = False
    ) -> List[RosterEntry]:
        return self._read(
            "list occurrences", lambda s: list_occurrences_for_user(s, user_id, period_id, include_dropped)
        )

    def occurrence_roster(self, period_id: int, include_dropped: bool = True) -> List[RosterEntry]:
        return self._read("occurrence roster", lambda s: occurrence_roster(s, period_id, include_dropped))
