"""Consistency checks and roster summaries for a period's stored schedule."""

from __future__ import annotations

from collections import Counter
from typing import List

import pandas as pd
from sqlalchemy.orm import Session

from .domain.models import STATUS_ASSIGNED
from .domain.repositories import ClaimRepository, OccurrenceRepository, PeriodRepository, SlotRepository
from .engine.generation import OccurrenceGenerator
from .engine.queries import occurrence_roster
from .errors import NotFound, ValidationFailed
from .io.export_csv import roster_dataframe
from .services.timeplan import day_of_week_for, get_day_name


def collect_schedule_issues(session: Session, period_id: int) -> List[str]:
    """Check a period's stored schedule against the generation and capacity rules."""
    period = PeriodRepository.get_by_id(session, period_id)
    if period is None:
        raise NotFound("Period not found", period_id=period_id)

    generator = OccurrenceGenerator()
    exceptions = [(exc.start, exc.end) for exc in PeriodRepository.get_exceptions(session, period.id)]
    issues = []

    for slot in SlotRepository.get_by_period(session, period.id):
        occurrences = OccurrenceRepository.get_by_slot(session, slot.id)
        expected = generator.expected_timestamps(slot, period, exceptions)
        stored = [occ.timestamp for occ in occurrences]

        if not stored:
            issues.append(f"Slot {slot.id} has no occurrences")
        if stored != expected:
            issues.append(
                f"Slot {slot.id} occurrences differ from its weekly expansion "
                f"({len(stored)} stored, {len(expected)} expected)"
            )
        for occ in occurrences:
            if not period.start <= occ.timestamp < period.end:
                issues.append(f"Occurrence {occ.id} at {occ.timestamp} lies outside period {period.id}")
            if day_of_week_for(occ.timestamp) != slot.day_of_week:
                issues.append(
                    f"Occurrence {occ.id} falls on {get_day_name(day_of_week_for(occ.timestamp))}, "
                    f"slot {slot.id} is on {get_day_name(slot.day_of_week)}"
                )
            if occ.timestamp.time() != slot.start_time:
                issues.append(f"Occurrence {occ.id} starts at {occ.timestamp.time()}, slot starts at {slot.start_time}")

        claimed = set(slot.claimed_user_ids)
        if len(claimed) > slot.slot_capacity:
            issues.append(f"Slot {slot.id} has {len(claimed)} claims for capacity {slot.slot_capacity}")

        for occ in occurrences:
            rows = ClaimRepository.get_occurrence_claims(session, occ.id)
            active = [row for row in rows if row.is_active]
            if len(active) > slot.slot_capacity:
                issues.append(
                    f"Occurrence {occ.id} has {len(active)} active claims for capacity {slot.slot_capacity}"
                )
            duplicates = [user for user, n in Counter(row.user_id for row in active).items() if n > 1]
            if duplicates:
                issues.append(f"Occurrence {occ.id} has duplicate active claims for users {sorted(duplicates)}")
            orphans = sorted(
                row.user_id for row in rows if row.status == STATUS_ASSIGNED and row.user_id not in claimed
            )
            if orphans:
                issues.append(f"Occurrence {occ.id} has assigned rows without a slot claim: users {orphans}")

    return issues


def validate_schedule_state(session: Session, period_id: int) -> None:
    """
    Raise ValidationFailed listing every violated schedule invariant of a period.

    Checked: occurrences match the weekly expansion (inside the range, on the
    slot's weekday and start time, outside blackout ranges), claim counts stay
    within capacity, at most one active row per (occurrence, user), and every
    assigned row is backed by a slot claim.
    """
    issues = collect_schedule_issues(session, period_id)
    if issues:
        raise ValidationFailed(
            f"Period {period_id} has {len(issues)} schedule issue(s):\n" + "\n".join(f"- {i}" for i in issues),
            issues=issues,
        )


def summarize_roster(session: Session, period_id: int) -> str:
    df = roster_dataframe(occurrence_roster(session, period_id, include_dropped=True))
    if df.empty:
        return "No occurrence claims."

    status_by_date = df.groupby(["date", "status"]).size().unstack(fill_value=0)
    active = df[df["status"] != "dropped"].copy()
    start = pd.to_datetime(active["date"] + " " + active["start_time"])
    end = pd.to_datetime(active["date"] + " " + active["end_time"])
    active["hours"] = (end - start).dt.total_seconds() / 3600.0
    hours = active.groupby("user_id")["hours"].sum().sort_values(ascending=False)

    lines = ["Claims per day per status:"]
    lines.append(status_by_date.to_string())
    lines.append("")
    lines.append("Scheduled hours per user (active claims):")
    lines.append(hours.to_string() if not hours.empty else "none")
    return "\n".join(lines)
