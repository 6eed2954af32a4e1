"""Command-line entry point for the legacy migration tool."""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from .extractors.database_extractor import DatabaseExtractor
from .loaders.database_loader import DatabaseLoader
from .models.connection import (
    DatabaseSettings,
    local_pg_settings,
    mysql_source_settings,
    remote_pg_settings,
)
from .models.migration import MigrationConfig, MigrationRun
from .models.schema import StepKind
from .orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legacy-migrate",
        description="Legacy database migration - copy a legacy MySQL schema into PostgreSQL with key remapping",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    migrate_parser = subparsers.add_parser("migrate", help="Import entities with key remapping")
    migrate_parser.add_argument(
        "--step",
        choices=[s.value for s in StepKind],
        default=StepKind.MYSQL_TO_LOCAL.value,
        help="Source/target pairing (default: mysql-to-local)",
    )
    migrate_parser.add_argument("--truncate", action="store_true", help="Clear target tables before importing")
    migrate_parser.add_argument("--pg-url", help="Target PostgreSQL URL (overrides env vars)")
    _add_common_arguments(migrate_parser)

    fetch_parser = subparsers.add_parser("fetch-remote", help="Copy core tables from the remote database verbatim")
    fetch_parser.add_argument("--pg-url", help="Local PostgreSQL URL (overrides PG_DB_* env vars)")
    fetch_parser.add_argument("--remote-url", help="Remote PostgreSQL URL (overrides REMOTE_PG_DB_* env vars)")
    _add_common_arguments(fetch_parser)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--dry-run", action="store_true", help="Simulate without writing")
    parser.add_argument("--only", help="Comma-separated entity groups, e.g. orgs,branches,users")
    parser.add_argument("--batch-size", type=_positive_int, default=100, help="Rows per batch (default: 100)")
    parser.add_argument("--report", help="Write a JSON run report to this path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def config_from_args(args: argparse.Namespace) -> MigrationConfig:
    return MigrationConfig(
        step=StepKind(getattr(args, "step", StepKind.MYSQL_TO_LOCAL.value)),
        dry_run=args.dry_run,
        only=MigrationConfig.parse_only(args.only),
        verbose=args.verbose,
        truncate=getattr(args, "truncate", False),
        batch_size=args.batch_size,
        report_path=args.report,
    )


def resolve_settings(args: argparse.Namespace) -> Tuple[DatabaseSettings, DatabaseSettings]:
    """
    Source and target settings for the command.

    Raises:
        ValueError: if a required environment variable is missing
    """
    if args.command == "fetch-remote":
        source = DatabaseSettings.from_url(args.remote_url) if args.remote_url else remote_pg_settings()
        target = DatabaseSettings.from_url(args.pg_url) if args.pg_url else local_pg_settings()
        return source, target

    if StepKind(args.step) == StepKind.LOCAL_TO_REMOTE:
        source = local_pg_settings()
        target = DatabaseSettings.from_url(args.pg_url) if args.pg_url else remote_pg_settings()
        return source, target

    source = mysql_source_settings()
    target = DatabaseSettings.from_url(args.pg_url) if args.pg_url else local_pg_settings()
    return source, target


def build_orchestrator(args: argparse.Namespace, config: MigrationConfig) -> MigrationOrchestrator:
    source, target = resolve_settings(args)
    extractor = DatabaseExtractor.from_settings(source)
    loader = DatabaseLoader.from_settings(target)
    return MigrationOrchestrator(config, extractor, loader)


def print_summary(orchestrator: MigrationOrchestrator, run: MigrationRun):
    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" if run.mode != "fetch-remote" else "FETCH COMPLETE")
    print("=" * 60)
    print(orchestrator.summary)
    print(f"\nStatus: {run.status.value}")
    if run.dry_run:
        print("This was a DRY RUN - no data was written")
    elif orchestrator.stats.has_errors:
        print(f"{orchestrator.stats.totals().errors} rows failed, see the log for details")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    config = config_from_args(args)
    try:
        orchestrator = build_orchestrator(args, config)
        if args.command == "fetch-remote":
            run = orchestrator.run_fetch_remote()
        else:
            run = orchestrator.run_migration()
    except Exception as e:
        logger.error(f"Fatal: {e}")
        print("\n" + "=" * 60)
        print("MIGRATION FAILED")
        print("=" * 60)
        print(f"Error: {e}")
        return 1

    print_summary(orchestrator, run)
    return 0


if __name__ == "__main__":
    sys.exit(main())
