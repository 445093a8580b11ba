"""Pytest configuration and shared fixtures."""

import datetime as dt

import pytest

from shiftengine.config import ShiftEngineConfig
from shiftengine.domain.db import create_db_engine, get_session_factory
from shiftengine.domain.models import Base
from shiftengine.events import EventCollector, EventDispatcher
from shiftengine.locking import KeyedLockRegistry
from shiftengine.service import SchedulingService
from shiftengine.services.eligibility import Identity


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (deselect with '-m \"not integration\"')"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


class FixedClock:
    """Settable clock for window and future checks."""

    def __init__(self, now: dt.datetime):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory(engine=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Create in-memory database session for testing."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    """Clock fixed one week before the sample term starts."""
    return FixedClock(dt.datetime(2024, 12, 30, 8, 0))


@pytest.fixture
def events():
    return EventCollector()


@pytest.fixture
def service(session_factory, clock, events):
    """Scheduling service on the in-memory database with a fixed clock and an event collector."""
    dispatcher = EventDispatcher()
    dispatcher.subscribe(events)
    return SchedulingService(
        session_factory,
        config=ShiftEngineConfig(database_url="sqlite://", max_retries=0),
        dispatcher=dispatcher,
        clock=clock,
        locks=KeyedLockRegistry(),
        sleep=lambda seconds: None,
    )


@pytest.fixture
def term(service):
    """
    Two-week term [2025-01-06, 2025-01-20) with one open category and a
    Monday 09:00-12:00 slot of capacity 2 (dayOfWeek 1 = Monday).
    """
    period = service.create_period("Spring", dt.datetime(2025, 1, 6), dt.datetime(2025, 1, 20))
    category = service.create_category(period.id, name="Front desk")
    slot = service.create_slot(category.id, 1, "09:00", "12:00", slot_capacity=2)
    return period, category, slot


@pytest.fixture
def users():
    """Three plain users A, B, C."""
    return Identity(1), Identity(2), Identity(3)
