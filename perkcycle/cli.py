"""Command-line entry point.

Examples:
    perkcycle validate perkcycle/plans/sapphire-reserve-2025.yaml
    perkcycle migrate --plan-id sapphire-reserve-2025 --dry-run
    perkcycle migrate perkcycle/plans/sapphire-reserve-2025.yaml --force --backup-dir backups/
    perkcycle materialize --at 2025-09-26T00:00:00Z
"""
import argparse
import logging
import sys

from perkcycle.config import Settings, get_settings
from perkcycle.database import create_db_engine, create_session_factory, init_db
from perkcycle.errors import PerkcycleError, PlanValidationError
from perkcycle.schemas.plan import MigrationPlan
from perkcycle.services.benefit_cycles import parse_cycle_instant
from perkcycle.services.cycle_materializer import CycleMaterializer
from perkcycle.services.migration_engine import (
    BenefitMigrationEngine,
    JsonBackupWriter,
    MigrationOptions,
    MigrationResult,
)
from perkcycle.services.migration_report import format_validation_report, validate_migration
from perkcycle.services.notifications import EmailNotifier
from perkcycle.services.plan_loader import find_plan, load_plan
from perkcycle.store import SqlAlchemyStore

logger = logging.getLogger("perkcycle")

EXIT_OK = 0
EXIT_ERRORS = 1

# Lists in the printed result are cut to this many entries
MAX_LISTED = 10


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--database-url", default=None, help="Override DATABASE_URL for this invocation.")
    common.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level.")

    parser = argparse.ArgumentParser(prog="perkcycle", description="Benefit cycle migrations and materialization")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", parents=[common], help="Apply a migration plan to card templates and accounts")
    migrate.add_argument("plan", nargs="?", help="Path to a YAML or JSON plan document.")
    migrate.add_argument("--plan-id", help="Id of a plan in the configured plans directory.")
    migrate.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would change without writing (the default unless --force is given).",
    )
    migrate.add_argument(
        "--force",
        action="store_true",
        help="Run live, and proceed even if pre-flight checks fail.",
    )
    migrate.add_argument("--batch-size", type=int, default=None, help="Accounts migrated concurrently per batch.")
    migrate.add_argument("--stop-on-error", action="store_true", help="Stop after the first batch with a failure.")
    migrate.add_argument(
        "--no-preserve-protected-state",
        action="store_true",
        help="Also replace benefits that have completed or not-usable statuses.",
    )
    migrate.add_argument(
        "--no-validate-cycles",
        action="store_true",
        help="Skip per-account cycle validation (pre-flight still runs).",
    )
    migrate.add_argument("--backup-dir", default=None, help="Write a JSON snapshot of each account before changing it.")

    validate = subparsers.add_parser("validate", parents=[common], help="Print a read-only validation report for a plan")
    validate.add_argument("plan", nargs="?", help="Path to a YAML or JSON plan document.")
    validate.add_argument("--plan-id", help="Id of a plan in the configured plans directory.")

    materialize = subparsers.add_parser("materialize", parents=[common], help="Upsert status rows for the current cycles")
    materialize.add_argument(
        "--at",
        type=parse_cycle_instant,
        default=None,
        help="Reference instant (ISO 8601, UTC when no offset is given). Defaults to now.",
    )
    materialize.add_argument("--no-notify", action="store_true", help="Do not send digests.")

    return parser


def _build_store(settings: Settings) -> SqlAlchemyStore:
    engine = create_db_engine(
        settings.database_url,
        echo=settings.debug,
        busy_timeout=settings.transaction_timeout_seconds,
    )
    init_db(engine)
    return SqlAlchemyStore(create_session_factory(engine), transaction_timeout=settings.transaction_timeout_seconds)


def _resolve_plan(args: argparse.Namespace, settings: Settings) -> MigrationPlan:
    if args.plan:
        return load_plan(args.plan)
    return find_plan(settings.plans_dir, args.plan_id)


def _print_result(result: MigrationResult) -> None:
    print(result.summary)

    if result.errors:
        print(f"\nErrors: {len(result.errors)}")
        for issue in result.errors[:MAX_LISTED]:
            who = f" [{issue.user_email or issue.account_id}]" if (issue.user_email or issue.account_id) else ""
            print(f"   - {issue.type.value}{who}: {issue.message}")
            if issue.details.get("error"):
                print(f"     {issue.details['error']}")

    if result.warnings:
        print(f"\nWarnings: {len(result.warnings)}")
        for warning in result.warnings[:MAX_LISTED]:
            print(f"   - {warning}")


def run_migrate(args: argparse.Namespace, settings: Settings) -> int:
    plan = _resolve_plan(args, settings)
    options = MigrationOptions(
        dry_run=args.dry_run or not args.force,
        force=args.force,
        batch_size=args.batch_size or settings.migration_batch_size,
        stop_on_first_error=args.stop_on_error,
        preserve_protected_state=not args.no_preserve_protected_state,
        validate_cycles=not args.no_validate_cycles,
        backup_writer=JsonBackupWriter(args.backup_dir) if args.backup_dir else None,
    )
    if options.dry_run:
        print("DRY RUN: no changes will be written (pass --force to run live)")

    engine = BenefitMigrationEngine(_build_store(settings), options)
    result = engine.apply(plan)
    _print_result(result)
    return EXIT_OK if result.success else EXIT_ERRORS


def run_validate(args: argparse.Namespace, settings: Settings) -> int:
    plan = _resolve_plan(args, settings)
    report = validate_migration(plan, _build_store(settings))
    print(format_validation_report(report))
    return EXIT_OK if report.is_valid else EXIT_ERRORS


def run_materialize(args: argparse.Namespace, settings: Settings) -> int:
    notifier = None if args.no_notify else EmailNotifier.from_settings(settings)
    materializer = CycleMaterializer(
        _build_store(settings),
        batch_size=settings.materialize_batch_size,
        notifier=notifier,
        expiring_threshold_days=settings.expiring_threshold_days,
    )
    result = materializer.materialize(args.at)
    print(
        f"Accounts: {result.accounts_ok}/{result.accounts_processed} ok. "
        f"Statuses: {result.statuses_ok}/{result.statuses_attempted} ok. "
        f"Skipped benefits: {result.benefits_skipped}. "
        f"Notifications: {result.notifications_sent} sent, {result.notifications_failed} failed."
    )
    for issue in result.errors[:MAX_LISTED]:
        print(f"   - {issue.type.value}: {issue.message} ({issue.details.get('error', '')})")
    failed = result.accounts_failed or result.statuses_failed or (result.errors and not result.accounts_processed)
    return EXIT_ERRORS if failed else EXIT_OK


COMMANDS = {
    "migrate": run_migrate,
    "validate": run_validate,
    "materialize": run_materialize,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in ("migrate", "validate"):
        if bool(args.plan) == bool(args.plan_id):
            parser.error("give either a plan file or --plan-id")
        if args.command == "migrate" and args.batch_size is not None and args.batch_size < 1:
            parser.error("--batch-size must be at least 1")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = get_settings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    try:
        return COMMANDS[args.command](args, settings)
    except PlanValidationError as e:
        logger.error(f"Invalid plan: {e}")
        print(f"Invalid plan: {e}", file=sys.stderr)
        return EXIT_ERRORS
    except PerkcycleError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"{args.command} failed: {e}", file=sys.stderr)
        return EXIT_ERRORS


if __name__ == "__main__":
    sys.exit(main())
