"""CSV export of occurrence rosters."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import pandas as pd
from sqlalchemy.orm import Session

from shiftengine.engine.queries import RosterEntry, occurrence_roster

logger = logging.getLogger(__name__)

ROSTER_COLUMNS = [
    "occurrence_id",
    "slot_id",
    "category_id",
    "date",
    "start_time",
    "end_time",
    "user_id",
    "status",
]


def roster_dataframe(entries: List[RosterEntry]) -> pd.DataFrame:
    """Flatten roster entries into one row per (occurrence, user, status)."""
    if not entries:
        return pd.DataFrame(columns=ROSTER_COLUMNS)
    df = pd.DataFrame(
        [
            {
                "occurrence_id": e.occurrence_id,
                "slot_id": e.slot_id,
                "category_id": e.category_id,
                "date": e.timestamp.date().isoformat(),
                "start_time": e.start_time.strftime("%H:%M"),
                "end_time": e.end_time.strftime("%H:%M"),
                "user_id": e.user_id,
                "status": e.status,
            }
            for e in entries
        ]
    )
    return df[ROSTER_COLUMNS]


def export_roster_csv(
    session: Session, csv_path: str | Path, period_id: int, include_dropped: bool = True
) -> int:
    """
    Write the occurrence roster of a period to CSV.

    Args:
        session: Database session
        csv_path: Output path
        period_id: Period to export
        include_dropped: Keep dropped rows as history

    Returns:
        Number of rows written
    """
    df = roster_dataframe(occurrence_roster(session, period_id, include_dropped))
    df.to_csv(csv_path, index=False)
    logger.info("Exported %d roster row(s) for period %s to %s", len(df), period_id, csv_path)
    return len(df)
