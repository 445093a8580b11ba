"""Serialization, deadlines and retry for mutating transactions."""

from __future__ import annotations

import logging
import threading
import time
import weakref
from contextlib import ExitStack, contextmanager
from typing import Callable, Hashable, Iterable, Iterator, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from shiftengine.errors import AlreadyExists, Conflict, Internal, SchedulingError, ValidationFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _KeyLock:
    __slots__ = ("lock", "__weakref__")

    def __init__(self):
        self.lock = threading.Lock()


class KeyedLockRegistry:
    """
    In-process mutexes keyed by resource, e.g. ("slot", 12).

    Locks are held through commit so two workers can never both read a stale
    claim count for the same slot.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[Hashable, _KeyLock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: Hashable) -> _KeyLock:
        with self._guard:
            holder = self._locks.get(key)
            if holder is None:
                holder = _KeyLock()
                self._locks[key] = holder
            return holder

    @contextmanager
    def hold(self, key: Hashable, timeout: float) -> Iterator[None]:
        holder = self._lock_for(key)
        if not holder.lock.acquire(timeout=timeout):
            raise Conflict(f"Timed out waiting for lock on {key}", key=key)
        try:
            yield
        finally:
            holder.lock.release()

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable], timeout: float) -> Iterator[None]:
        """Acquire several locks in a stable order."""
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self.hold(key, timeout))
            yield


DEFAULT_LOCKS = KeyedLockRegistry()


class Deadline:
    """Wall-time budget for one transaction."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, operation: str) -> None:
        if self.expired:
            raise Conflict(f"{operation} exceeded its {self.seconds:.1f}s transaction budget")


def apply_session_timeouts(session: Session, lock_timeout: float, statement_timeout: float) -> None:
    """Bound lock waits and statement time for the current transaction where the dialect allows it."""
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout * 1000)}ms'"))
    session.execute(text(f"SET LOCAL statement_timeout = '{int(statement_timeout * 1000)}ms'"))


_UNIQUE_MARKERS = ("unique constraint", "duplicate entry", "duplicate key", "uq_")
_FOREIGN_KEY_MARKERS = ("foreign key constraint", "violates foreign key", "cannot add or update a child row")


def _integrity_kind(error: IntegrityError) -> str:
    """Classify an integrity failure as "unique", "foreign_key" or "other"."""
    code = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if code == "23505":
        return "unique"
    if code == "23503":
        return "foreign_key"
    message = str(error.orig).lower()
    if any(marker in message for marker in _UNIQUE_MARKERS):
        return "unique"
    if any(marker in message for marker in _FOREIGN_KEY_MARKERS):
        return "foreign_key"
    return "other"


@contextmanager
def translate_db_errors(operation: str) -> Iterator[None]:
    """
    Map database failures onto the scheduling error taxonomy.

    Unique violations become AlreadyExists. A foreign key violation means a
    referenced row was deleted by a concurrent writer and becomes Conflict.
    Check and not-null failures become ValidationFailed.
    """
    try:
        yield
    except SchedulingError:
        raise
    except OperationalError as e:
        # lock wait timeout, "database is locked", serialization failure
        raise Conflict(f"{operation} could not acquire the database: {e.orig}") from e
    except IntegrityError as e:
        kind = _integrity_kind(e)
        if kind == "unique":
            raise AlreadyExists(f"{operation} violated a uniqueness constraint: {e.orig}") from e
        if kind == "foreign_key":
            raise Conflict(f"{operation} referenced a row that no longer exists: {e.orig}") from e
        raise ValidationFailed(f"{operation} violated a data constraint: {e.orig}") from e
    except SQLAlchemyError as e:
        raise Internal(f"{operation} failed: {e}") from e
    except Exception as e:
        raise Internal(f"{operation} failed unexpectedly: {e}") from e


def run_with_retry(
    fn: Callable[[], T],
    max_retries: int = 3,
    backoff_seconds: float = 0.05,
    operation: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying only on Conflict.

    Args:
        fn: Zero-argument callable running one full transaction
        max_retries: Extra attempts after the first
        backoff_seconds: Linear backoff step between attempts

    Returns:
        Whatever fn returns
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Conflict as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning("%s conflicted (%s); retry %d/%d", operation, e.message, attempt, max_retries)
            sleep(backoff_seconds * attempt)
