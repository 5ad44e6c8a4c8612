"""
Command-line interface for the economy ledger.

Provides CLI commands for operating the service:
- init-db: Initialize the database schema
- run: Start the API server
- verify: Replay history and compare it with the live aggregates
- backfill-codex: Stamp baseline codex history for a date

Usage:
    economy-ledger init-db
    economy-ledger run [--host HOST] [--port PORT]
    economy-ledger verify [--user USER]
    economy-ledger backfill-codex 2024-01-01 [--user USER]
"""

import argparse
import sys
from datetime import date

from economy_ledger.db.errors import DatabaseError
from economy_ledger.ledger.errors import LedgerError


def cmd_init_db(args: argparse.Namespace) -> int:
    """
    Initialize the database schema.

    Returns:
        0 on success, 1 on error
    """
    from economy_ledger.db.schema import init_database

    try:
        init_database()
        print("Database initialized successfully.")
        return 0
    except Exception as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Start the API server in the foreground."""
    from economy_ledger.api.server import start_server

    try:
        start_server(host=args.host, port=args.port)
        return 0
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    except OSError as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        return 1


def cmd_verify(args: argparse.Namespace) -> int:
    """
    Replay history for one user (or all) and report mismatches.

    Returns:
        0 when every replayed user matches the aggregates, 1 otherwise
    """
    from economy_ledger.config import config
    from economy_ledger.db.schema import init_database
    from economy_ledger.ledger.service import LedgerService

    try:
        init_database()
        service = LedgerService.from_config(config)
        reports = [service.verify_user(args.user)] if args.user else service.verify_all()
    except (LedgerError, DatabaseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    mismatched = [report for report in reports if not report.consistent]
    for report in mismatched:
        print(f"{report.user_id}: MISMATCH")
        for resource in report.unexplained:
            print(f"  unexplained {resource}")
        for resource in report.missing:
            print(f"  missing     {resource}")
    print(f"Verified {len(reports)} user(s); {len(mismatched)} mismatch(es).")
    return 1 if mismatched else 0


def cmd_backfill_codex(args: argparse.Namespace) -> int:
    """Stamp ``CodexUnlocked`` events for unlogged codex unlocks."""
    from economy_ledger.config import config
    from economy_ledger.db.schema import init_database
    from economy_ledger.ledger.service import LedgerService

    try:
        day = date.fromisoformat(args.date)
    except ValueError:
        print(f"Error: invalid date {args.date!r}; expected YYYY-MM-DD", file=sys.stderr)
        return 1

    try:
        init_database()
        service = LedgerService.from_config(config)
        result = service.backfill.backfill_codex(day, args.user)
    except (LedgerError, DatabaseError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(result.message)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    from economy_ledger.logging_config import configure_logging

    parser = argparse.ArgumentParser(
        prog="economy-ledger",
        description="Economy Ledger - event-sourced integrity layer for the card economy",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser(
        "init-db",
        help="Initialize the database schema",
        description="Create the event log, aggregate tables, indexes and triggers.",
    )
    init_parser.set_defaults(func=cmd_init_db)

    run_parser = subparsers.add_parser("run", help="Run the API server")
    run_parser.add_argument("--host", type=str, help="Host to bind (default: config server.host)")
    run_parser.add_argument(
        "--port", "-p", type=int, help="Port to bind (default: config server.port)"
    )
    run_parser.set_defaults(func=cmd_run)

    verify_parser = subparsers.add_parser(
        "verify",
        help="Check that replayed history matches the aggregates",
    )
    verify_parser.add_argument("--user", type=str, help="Only verify this user")
    verify_parser.set_defaults(func=cmd_verify)

    backfill_parser = subparsers.add_parser(
        "backfill-codex",
        help="Stamp baseline codex unlock events",
        description="Append CodexUnlocked events dated DATE 00:00 UTC for unlogged unlocks.",
    )
    backfill_parser.add_argument("date", type=str, help="Baseline date (YYYY-MM-DD)")
    backfill_parser.add_argument("--user", type=str, help="Only backfill this user")
    backfill_parser.set_defaults(func=cmd_backfill_codex)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command != "run":
        configure_logging()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
