"""CSV import of recurring slot definitions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pandas as pd
from sqlalchemy.orm import Session

from shiftengine.engine.admin import AdminEngine, SlotDefinition
from shiftengine.errors import ValidationFailed

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("category_id", "day_of_week", "start_time", "end_time")


def read_schedule_csv(csv_path: str | Path) -> pd.DataFrame:
    """
    Read and normalize a slot definition CSV.

    Columns: category_id, day_of_week, start_time, end_time and optionally
    slot_capacity (default 1).

    Raises:
        ValidationFailed: If a required column is missing or a value is not an integer
    """
    df = pd.read_csv(csv_path, dtype=str)

    # Normalize column names
    df.columns = df.columns.str.lower().str.strip()

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValidationFailed(f"{csv_path}: missing column(s) {', '.join(missing)}")

    if "slot_capacity" not in df.columns:
        df["slot_capacity"] = 1
    df["slot_capacity"] = df["slot_capacity"].fillna(1)

    for col in ("category_id", "day_of_week", "slot_capacity"):
        numeric = pd.to_numeric(df[col], errors="coerce")
        if numeric.isna().any() or (numeric % 1 != 0).any():
            raise ValidationFailed(f"{csv_path}: column {col} must contain integers")
        df[col] = numeric.astype(int)

    df["start_time"] = df["start_time"].str.strip()
    df["end_time"] = df["end_time"].str.strip()
    return df


def import_schedule_csv(session: Session, csv_path: str | Path, admin: Optional[AdminEngine] = None) -> int:
    """
    Import slot definitions from CSV, generating their occurrences.

    Rows are grouped by (category_id, slot_capacity) and created through the
    bulk slot path, so existing weekday/start-time combinations are skipped.
    The caller owns the transaction.

    Args:
        session: Database session
        csv_path: Path to the schedule CSV
        admin: Engine to create slots with (default: a fresh AdminEngine)

    Returns:
        Number of slots created
    """
    df = read_schedule_csv(csv_path)
    created = import_schedule_frame(session, df, admin)
    logger.info("Imported %d slot(s) from %s (%d row(s))", created, csv_path, len(df))
    return created


def import_schedule_frame(session: Session, df: pd.DataFrame, admin: Optional[AdminEngine] = None) -> int:
    """Create slots from a frame returned by read_schedule_csv. Returns number of slots created."""
    admin = admin or AdminEngine()
    created = 0
    for (category_id, slot_capacity), group in df.groupby(["category_id", "slot_capacity"], sort=True):
        definitions = [
            SlotDefinition(int(row.day_of_week), str(row.start_time), str(row.end_time))
            for row in group.itertuples(index=False)
        ]
        slots = admin.bulk_create_slots(session, [int(category_id)], definitions, int(slot_capacity))
        created += len(slots)
    return created
