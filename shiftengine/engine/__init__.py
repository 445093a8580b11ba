"""Scheduling engine: occurrence generation, registration, drop/pick-up and admin edits."""

from .admin import AdminEngine, SlotDefinition
from .exchange import ExchangeEngine
from .generation import GenerationReport, OccurrenceGenerator, occurrence_timestamps
from .queries import RosterEntry, SlotAvailability, list_for_registration, list_occurrences_for_user, occurrence_roster
from .registration import RegistrationEngine

__all__ = [
    "AdminEngine",
    "SlotDefinition",
    "ExchangeEngine",
    "GenerationReport",
    "OccurrenceGenerator",
    "occurrence_timestamps",
    "RegistrationEngine",
    "RosterEntry",
    "SlotAvailability",
    "list_for_registration",
    "list_occurrences_for_user",
    "occurrence_roster",
]
