"""Recurring shift scheduling engine.

Modules:
- config: load and validate configuration (YAML or JSON)
- errors: typed failure taxonomy shared by every operation
- domain: SQLAlchemy models, database setup and repositories
- services: time parsing, window gates and eligibility rules
- engine: occurrence generation, registration, drop/pick-up, admin edits and reads
- locking: key locks, transaction deadlines and conflict retry
- events: post-commit schedule update events
- service: transactional facade used by callers
- io: CSV import of slot definitions and roster export
- validator: post-hoc schedule invariant checks
- cli: command-line interface entrypoints
"""

__all__ = [
    "config",
    "errors",
    "domain",
    "services",
    "engine",
    "locking",
    "events",
    "service",
    "io",
    "validator",
    "cli",
]
