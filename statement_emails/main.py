"""Statement Email Scheduler -- Command Line Entry Point.

Wires configuration, storage, the backend client and the mailer into a
``StatementEmailScheduler`` and exposes it through subcommands:

    run                   Poll every 30 minutes and send due statements
    tick [--now ISO]      Run one evaluation immediately
    preview [--now ISO]   Show schedule points, periods and due flags
    status                Show the stored last-sent markers
    init-db               Create tables and default settings
    import-recipients X   Load customer portal users from an XLSX export

Usage::

    python -m statement_emails.main init-db
    python -m statement_emails.main import-recipients data/portal_users.xlsx
    python -m statement_emails.main --config custom.yaml tick
    python -m statement_emails.main -v run
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime, timezone
from typing import Optional

from .api_client import BackendApiClient
from .config import StatementEmailConfig, get_config
from .mailer import SmtpStatementMailer
from .models import Cadence
from .recipients import PortalUserStore, load_recipients_workbook
from .schedule import (
    format_utc,
    is_due,
    next_schedule_point_for,
    parse_utc,
    period_for,
    schedule_point_for,
)
from .scheduler import StatementEmailScheduler
from .settings_store import AppSettingsStore
from .statements import BackendStatementGenerator

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def setup_logging(cfg: StatementEmailConfig, verbose: bool = False) -> None:
    """Configure root logging from the ``logging`` config section."""
    level = logging.DEBUG if verbose else getattr(logging, str(cfg.logging.level).upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = cfg.logging.resolved_log_file()
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=_LOG_FORMAT, datefmt="%H:%M:%S", handlers=handlers, force=True)


def build_scheduler(cfg: StatementEmailConfig, client: BackendApiClient) -> StatementEmailScheduler:
    """Assemble a scheduler backed by SQLite, the backend API and SMTP."""
    db_path = cfg.storage.resolved_db_path
    return StatementEmailScheduler(
        settings=cfg.statement_emails,
        store=AppSettingsStore(db_path),
        recipients=PortalUserStore(db_path),
        generator=BackendStatementGenerator(client),
        mailer=SmtpStatementMailer(cfg.email),
        poll_interval_seconds=cfg.scheduler.poll_interval_seconds,
        run_on_start=cfg.scheduler.run_on_start,
    )


def _parse_now(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    parsed = parse_utc(raw)
    if parsed is None:
        raise ValueError(f"Cannot parse --now value: {raw!r}")
    return parsed


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_run(cfg: StatementEmailConfig, args: argparse.Namespace) -> int:
    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.info("Received signal %s; stopping after the current tick", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    if not cfg.statement_emails.enabled:
        logger.warning("statement_emails.enabled is false; ticks will do nothing")
    with BackendApiClient.from_config(cfg.backend_api) as client:
        build_scheduler(cfg, client).run_forever(stop_event)
    return 0


def cmd_tick(cfg: StatementEmailConfig, args: argparse.Namespace) -> int:
    now = _parse_now(args.now)
    with BackendApiClient.from_config(cfg.backend_api) as client:
        result = build_scheduler(cfg, client).run_tick(now)
    print(result.summary())
    for run in result.runs.values():
        for failure in run.failures:
            print(f"    {failure.stage:<8} {failure.card_code:<12} {failure.email}  {failure.reason}")
    return 1 if result.errors else 0


def cmd_preview(cfg: StatementEmailConfig, args: argparse.Namespace) -> int:
    now = _parse_now(args.now)
    settings = cfg.statement_emails
    store = AppSettingsStore(cfg.storage.resolved_db_path)

    print(f"Now (UTC):         {format_utc(now)}")
    print(f"Enabled:           {settings.enabled}")
    print(f"Weekly:            {settings.weekly_day_of_week.display_name} "
          f"{settings.weekly_send_hour_utc:02d}:00 UTC")
    print(f"Monthly:           day {settings.monthly_day_of_month} "
          f"{settings.monthly_send_hour_utc:02d}:00 UTC")
    for cadence in (Cadence.WEEKLY, Cadence.MONTHLY):
        point = schedule_point_for(cadence, now, settings)
        upcoming = next_schedule_point_for(cadence, now, settings)
        last_sent = store.get_last_sent(cadence)
        print()
        print(f"[{cadence.label}]")
        print(f"  Last sent:       {format_utc(last_sent) if last_sent else 'never'}")
        print(f"  Schedule point:  {format_utc(point)}  period {period_for(cadence, point)}")
        print(f"  Due now:         {'yes' if is_due(last_sent, point) else 'no'}")
        print(f"  Next point:      {format_utc(upcoming)}  period {period_for(cadence, upcoming)}")
    return 0


def cmd_status(cfg: StatementEmailConfig, args: argparse.Namespace) -> int:
    db_path = cfg.storage.resolved_db_path
    store = AppSettingsStore(db_path)
    users = PortalUserStore(db_path)

    print(f"Database:          {db_path}")
    print(f"Enabled:           {cfg.statement_emails.enabled}")
    for cadence in (Cadence.WEEKLY, Cadence.MONTHLY):
        last_sent = store.get_last_sent(cadence)
        print(f"Last {cadence.label.lower():<8} sent: {format_utc(last_sent) if last_sent else 'never'}")
    print(f"Portal users:      {users.count_users()}")
    print(f"Recipients:        {len(users.list_statement_recipients())}")
    return 0


def cmd_init_db(cfg: StatementEmailConfig, args: argparse.Namespace) -> int:
    db_path = cfg.storage.resolved_db_path
    store = AppSettingsStore(db_path)
    PortalUserStore(db_path)
    added = store.initialize_default_settings()
    print(f"Initialized {db_path} ({added} default settings added)")
    return 0


def cmd_import_recipients(cfg: StatementEmailConfig, args: argparse.Namespace) -> int:
    result = load_recipients_workbook(args.xlsx)
    for warning in result.warnings:
        logger.warning(warning)
    users = PortalUserStore(cfg.storage.resolved_db_path)
    count = users.upsert_users(result.users)
    print(f"Imported {count} portal users "
          f"({len(result.statement_recipients)} statement recipients, "
          f"{result.rows_skipped} rows skipped, {len(result.warnings)} warnings)")
    return 0


_COMMANDS = {
    "run": cmd_run,
    "tick": cmd_tick,
    "preview": cmd_preview,
    "status": cmd_status,
    "init-db": cmd_init_db,
    "import-recipients": cmd_import_recipients,
}


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="statement-emails",
        description="Statement Email Scheduler - weekly and monthly customer statements",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python -m statement_emails.main init-db\n"
            "  python -m statement_emails.main preview --now 2024-03-15T08:00:00Z\n"
            "  python -m statement_emails.main --config custom.yaml run\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Start the polling loop")
    for name, help_text in (
        ("tick", "Run one evaluation immediately"),
        ("preview", "Show schedule points and reporting periods"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--now", type=str, default=None, help="Evaluate as of this ISO-8601 UTC time")
    sub.add_parser("status", help="Show stored last-sent markers")
    sub.add_parser("init-db", help="Create tables and default settings")
    p = sub.add_parser("import-recipients", help="Import customer portal users from XLSX")
    p.add_argument("xlsx", type=str, help="Path to the portal user workbook")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.

    Returns:
        Exit code (0 = success, 1 = error).
    """
    args = build_parser().parse_args(argv)

    try:
        cfg = get_config(args.config)
        setup_logging(cfg, verbose=args.verbose)
        return _COMMANDS[args.command](cfg, args)

    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except ValueError as exc:
        logger.error("Data error: %s", exc)
        print(f"\nERROR: {exc}")
        return 1
    except Exception as exc:
        logger.exception("Unexpected error")
        print(f"\nUNEXPECTED ERROR: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
