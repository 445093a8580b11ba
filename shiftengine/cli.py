"""Command-line interface for the shift scheduling engine."""

from __future__ import annotations

import argparse
import logging
from datetime import datetime

from shiftengine.config import ShiftEngineConfig, load_config
from shiftengine.domain.db import get_session_factory, init_database
from shiftengine.domain.repositories import PeriodRepository
from shiftengine.io.export_csv import export_roster_csv
from shiftengine.service import SchedulingService
from shiftengine.validator import summarize_roster, validate_schedule_state


def _parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO date/datetime: {value!r}") from e


def _load(args: argparse.Namespace) -> ShiftEngineConfig:
    """Load config, apply --db, and configure logging from log_level."""
    cfg = load_config(args.config)
    if args.db:
        cfg.database_url = args.db
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return cfg


def _cmd_init_db(args: argparse.Namespace) -> None:
    """Initialize the database."""
    cfg = _load(args)
    init_database(cfg.database_url)
    print(f"[OK] Database initialized: {cfg.database_url}")


def _cmd_list_periods(args: argparse.Namespace) -> None:
    cfg = _load(args)
    session = get_session_factory(cfg.database_url)()
    try:
        periods = PeriodRepository.get_all(session)
        if not periods:
            print("No periods.")
        for period in periods:
            print(f"{period.id}\t{period.name}\t[{period.start}, {period.end})")
    finally:
        session.close()


def _cmd_create_period(args: argparse.Namespace) -> None:
    """Create a period with optional windows."""
    cfg = _load(args)
    try:
        service = SchedulingService.from_config(cfg)
        period = service.create_period(
            args.name,
            args.start,
            args.end,
            visible_start=args.visible_start,
            visible_end=args.visible_end,
            signup_start=args.signup_start,
            signup_end=args.signup_end,
            modify_start=args.modify_start,
            modify_end=args.modify_end,
            allowed_role_ids=args.allowed_role or [],
        )
        print(f"[OK] Created period {period.id} '{period.name}' [{period.start}, {period.end})")
    except Exception as e:
        print(f"[ERROR] Period creation failed: {e}")
        raise


def _cmd_regenerate(args: argparse.Namespace) -> None:
    """Regenerate every occurrence of a period."""
    cfg = _load(args)
    try:
        service = SchedulingService.from_config(cfg)
        report = service.generate_occurrences(args.period)
        print(
            f"[OK] Period {args.period}: {len(report.slots_regenerated)} slot(s) regenerated, "
            f"{report.occurrences_created} occurrence(s), {len(report.slots_deleted)} slot(s) deleted"
        )
    except Exception as e:
        print(f"[ERROR] Regeneration failed: {e}")
        raise


def _cmd_import_csv(args: argparse.Namespace) -> None:
    """Import slot definitions from CSV."""
    cfg = _load(args)
    try:
        service = SchedulingService.from_config(cfg)
        count = service.import_slots_csv(args.slots)
        print(f"[OK] Imported {count} slot(s)")
    except Exception as e:
        print(f"[ERROR] Import failed: {e}")
        raise


def _cmd_export_roster(args: argparse.Namespace) -> None:
    """Export a period's occurrence roster to CSV."""
    cfg = _load(args)
    session = get_session_factory(cfg.database_url)()
    try:
        count = export_roster_csv(session, args.out, args.period, include_dropped=not args.active_only)
        print(f"[OK] Exported {count} roster row(s) to {args.out}")
    except Exception as e:
        print(f"[ERROR] Export failed: {e}")
        raise
    finally:
        session.close()


def _cmd_validate(args: argparse.Namespace) -> None:
    """Validate the stored schedule of a period."""
    cfg = _load(args)
    session = get_session_factory(cfg.database_url)()
    try:
        validate_schedule_state(session, args.period)
        print(f"[OK] Validation passed for period {args.period}")
    except Exception as e:
        print(f"[ERROR] Validation failed: {e}")
        raise
    finally:
        session.close()


def _cmd_summarize(args: argparse.Namespace) -> None:
    """Print a coverage and hours summary of a period."""
    cfg = _load(args)
    session = get_session_factory(cfg.database_url)()
    try:
        print(summarize_roster(session, args.period))
    finally:
        session.close()


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="shiftengine",
        description="Recurring shift scheduling: occurrence generation, registration and rosters",
    )

    # Global options
    parser.add_argument("--db", help="Database URL (overrides the config file)")
    parser.add_argument("--config", help="Path to config YAML or JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    # init-db command
    init = sub.add_parser("init-db", help="Initialize database")
    init.set_defaults(func=_cmd_init_db)

    # list-periods command
    lst = sub.add_parser("list-periods", help="List periods with their ids")
    lst.set_defaults(func=_cmd_list_periods)

    # create-period command
    per = sub.add_parser("create-period", help="Create a period")
    per.add_argument("--name", required=True, help="Period name")
    per.add_argument("--start", required=True, type=_parse_datetime, help="Inclusive start (ISO)")
    per.add_argument("--end", required=True, type=_parse_datetime, help="Exclusive end (ISO)")
    for window in ("visible", "signup", "modify"):
        per.add_argument(f"--{window}-start", type=_parse_datetime, help=f"{window} window start (ISO)")
        per.add_argument(f"--{window}-end", type=_parse_datetime, help=f"{window} window end (ISO)")
    per.add_argument("--allowed-role", type=int, action="append", help="Role id allowed to access (repeatable)")
    per.set_defaults(func=_cmd_create_period)

    # regenerate command
    reg = sub.add_parser("regenerate", help="Regenerate every occurrence of a period")
    reg.add_argument("--period", required=True, type=int, help="Period id")
    reg.set_defaults(func=_cmd_regenerate)

    # import-csv command
    imp = sub.add_parser("import-csv", help="Import slot definitions from CSV")
    imp.add_argument("--slots", required=True, help="Path to slots CSV")
    imp.set_defaults(func=_cmd_import_csv)

    # export-roster command
    exp = sub.add_parser("export-roster", help="Export a period's occurrence roster to CSV")
    exp.add_argument("--period", required=True, type=int, help="Period id")
    exp.add_argument("--out", required=True, help="Output CSV path")
    exp.add_argument("--active-only", action="store_true", help="Leave out dropped rows")
    exp.set_defaults(func=_cmd_export_roster)

    # validate command
    val = sub.add_parser("validate", help="Validate the stored schedule of a period")
    val.add_argument("--period", required=True, type=int, help="Period id")
    val.set_defaults(func=_cmd_validate)

    # summarize command
    summ = sub.add_parser("summarize", help="Summarize claims and hours for a period")
    summ.add_argument("--period", required=True, type=int, help="Period id")
    summ.set_defaults(func=_cmd_summarize)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
