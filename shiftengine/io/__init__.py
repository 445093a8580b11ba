"""I/O utilities for CSV import/export."""

from .export_csv import export_roster_csv, roster_dataframe
from .import_csv import import_schedule_csv, import_schedule_frame, read_schedule_csv

__all__ = [
    "import_schedule_csv",
    "import_schedule_frame",
    "read_schedule_csv",
    "export_roster_csv",
    "roster_dataframe",
]
