"""Benefit migration engine.

Applies a MigrationPlan to the card product templates and to every account
that already holds one of the plan's products. Each account is migrated in
its own transaction; accounts are processed concurrently in bounded batches
and a failing account is recorded in the result instead of stopping the run.
"""
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from perkcycle.errors import (
    CycleCalculationError,
    ErrorType,
    Issue,
    PerkcycleError,
    PlanValidationError,
    UserDataError,
)
from perkcycle.schemas.account import AccountSnapshot, BenefitSnapshot
from perkcycle.schemas.plan import BenefitDefinition, CardUpdate, MigrationPlan
from perkcycle.services.batching import Outcome, run_in_batches
from perkcycle.services.benefit_cycles import (
    BenefitCycle,
    BenefitFrequency,
    as_utc,
    calculate_cycle,
    compute_one_time_lifetime,
    normalize_cycle_date,
)
from perkcycle.services.cycle_validation import validate_cycle
from perkcycle.store import BenefitStore, StatusKey

logger = logging.getLogger(__name__)

# Anchor used to exercise anniversary-aligned YEARLY benefits during pre-flight
PREFLIGHT_OPENED_DATE = date(2024, 1, 15)

BackupWriter = Callable[[AccountSnapshot], Any]


@dataclass
class MigrationOptions:
    dry_run: bool = True
    force: bool = False
    batch_size: int = 10
    stop_on_first_error: bool = False
    preserve_protected_state: bool = True
    validate_cycles: bool = True
    backup_writer: BackupWriter | None = None


@dataclass(frozen=True)
class PreflightCheck:
    check_type: str  # user_count | benefit_validation | cycle_calculation
    status: str  # pass | fail | warning
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == "fail"


@dataclass
class MigrationResult:
    success: bool
    dry_run: bool
    affected_accounts: int = 0
    failed_accounts: int = 0
    benefits_created: int = 0
    benefits_deleted: int = 0
    errors: list[Issue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    checks: list[PreflightCheck] = field(default_factory=list)
    summary: str = ""


@dataclass(frozen=True)
class AccountOutcome:
    created: int
    deleted: int
    warnings: tuple[str, ...] = ()


class JsonBackupWriter:
    """Write each account's pre-migration snapshot to ``directory`` as JSON."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def __call__(self, account: AccountSnapshot) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = self.directory / f"{account.id}-{stamp}.json"
        with open(path, "w") as f:
            json.dump(account.model_dump(mode="json"), f, indent=2)
        logger.debug(f"Backed up account {account.id} to {path}")
        return path


def _issue_from_check(check: PreflightCheck) -> Issue:
    if check.check_type == "benefit_validation":
        issue_type = ErrorType.VALIDATION
    elif check.check_type == "cycle_calculation":
        issue_type = ErrorType.CYCLE_CALCULATION
    else:
        issue_type = ErrorType.DATABASE
    return Issue(type=issue_type, message=check.message, details=check.details)


def preflight_cycle(definition: BenefitDefinition, now: datetime) -> BenefitCycle:
    """Calculate a benefit's cycle against synthetic account data."""
    if definition.is_one_time:
        return compute_one_time_lifetime(normalize_cycle_date(now))
    opened = PREFLIGHT_OPENED_DATE if definition.frequency == BenefitFrequency.YEARLY else None
    return calculate_cycle(definition.schedule, now, opened)


def check_benefit_definition(definition: BenefitDefinition, now: datetime) -> PreflightCheck:
    """Run the cycle calculator and validator over one plan benefit."""
    try:
        cycle = preflight_cycle(definition, now)
    except CycleCalculationError as exc:
        return PreflightCheck(
            check_type="cycle_calculation",
            status="fail",
            message=f"Cycle calculation failed for benefit: {definition.description}",
            details={"benefit": definition.description, "error": str(exc)},
        )

    validation = validate_cycle(definition, cycle)
    if not validation.ok:
        return PreflightCheck(
            check_type="benefit_validation",
            status="fail",
            message=f"Benefit validation failed: {validation.reason}",
            details={"benefit": definition.description},
        )
    return PreflightCheck(
        check_type="benefit_validation",
        status="pass",
        message=f'Benefit "{definition.description}" validation passed',
        details={
            "benefit": definition.description,
            "cycle_start": cycle.start.isoformat(),
            "cycle_end": cycle.end.isoformat(),
        },
    )


def benefits_to_delete(account: AccountSnapshot, preserve_protected_state: bool) -> list[BenefitSnapshot]:
    """Benefits a migration removes from ``account``.

    With protection on, any benefit holding a completed or not-usable status
    is left in place along with its whole status history.
    """
    if preserve_protected_state:
        return account.unprotected_benefits
    return list(account.benefits)


class BenefitMigrationEngine:
    """Apply migration plans to card templates and existing accounts."""

    def __init__(
        self,
        store: BenefitStore,
        options: MigrationOptions | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.options = options or MigrationOptions()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def apply(self, plan: MigrationPlan) -> MigrationResult:
        """Run ``plan``.

        Data problems never raise out of this method; they are reported in
        the returned MigrationResult.
        """
        options = self.options
        mode = "DRY RUN" if options.dry_run else "LIVE"
        logger.info(f"{mode} migration: {plan.title} (plan {plan.id}, version {plan.version})")

        errors: list[Issue] = []
        warnings: list[str] = []

        if not options.dry_run and not options.force:
            errors.append(Issue(
                type=ErrorType.VALIDATION,
                message="Live migrations require force; rerun with force enabled or as a dry run",
            ))
            return self._failed(errors, warnings, [])
        if not options.dry_run and plan.dry_run_only:
            errors.append(Issue(
                type=ErrorType.VALIDATION,
                message=f"Plan {plan.id} is marked dry-run only",
            ))
            return self._failed(errors, warnings, [])

        now = as_utc(self.clock())

        try:
            checks = self.run_preflight_checks(plan, now)
        except PerkcycleError as exc:
            errors.append(Issue(type=exc.error_type, message=f"Pre-flight checks could not run: {exc}"))
            return self._failed(errors, warnings, [])

        failed_checks = [check for check in checks if check.failed]
        if failed_checks:
            if not options.force:
                errors.extend(_issue_from_check(check) for check in failed_checks)
                logger.error(f"Pre-flight checks failed: {len(failed_checks)} check(s); nothing was written")
                return self._failed(errors, warnings, checks)
            for check in failed_checks:
                warnings.append(f"Pre-flight check bypassed with force: {check.message}")
        warnings.extend(check.message for check in checks if check.status == "warning")

        self._update_templates(plan, errors, warnings)

        result = MigrationResult(success=False, dry_run=options.dry_run, checks=checks)
        for card_update in plan.card_updates:
            if options.stop_on_first_error and errors:
                logger.warning(f"Skipping {card_update.card_name}: stopping on first error")
                break
            self._migrate_product(card_update, now, result, errors, warnings)

        result.errors = errors
        result.warnings = warnings
        result.success = not errors
        result.summary = self._summary(result)
        logger.info(result.summary)
        return result

    def run_preflight_checks(self, plan: MigrationPlan, now: datetime | None = None) -> list[PreflightCheck]:
        """Count affected accounts and dry-calculate every benefit in the plan."""
        now = as_utc(now or self.clock())
        checks = []

        for card_update in plan.card_updates:
            count = self.store.count_accounts_by_product(card_update.card_name)
            checks.append(PreflightCheck(
                check_type="user_count",
                status="pass" if count else "warning",
                message=(
                    f'Found {count} accounts with "{card_update.card_name}" cards'
                    if count
                    else f'No existing accounts hold "{card_update.card_name}"; only the template will change'
                ),
                details={"card_name": card_update.card_name, "account_count": count},
            ))

        for card_update in plan.card_updates:
            for definition in card_update.benefits:
                checks.append(check_benefit_definition(definition, now))

        return checks

    def _failed(
        self,
        errors: list[Issue],
        warnings: list[str],
        checks: list[PreflightCheck],
    ) -> MigrationResult:
        for issue in errors:
            logger.error(f"{issue.type.value}: {issue.message}")
        return MigrationResult(
            success=False,
            dry_run=self.options.dry_run,
            errors=errors,
            warnings=warnings,
            checks=checks,
            summary="Migration failed before any account was modified",
        )

    def _update_templates(self, plan: MigrationPlan, errors: list[Issue], warnings: list[str]) -> None:
        if self.options.dry_run:
            logger.info("DRY RUN: card product templates left unchanged")
            return

        for card_update in plan.card_updates:
            try:
                created = self.store.upsert_product_template(card_update)
            except PerkcycleError as exc:
                errors.append(Issue(
                    type=ErrorType.DATABASE,
                    message=f"Failed to update card product template: {card_update.card_name}",
                    details={"error": str(exc)},
                ))
                continue
            if created:
                warnings.append(f'Card product "{card_update.card_name}" not found; created a new template')
            logger.info(f"Updated card product template: {card_update.card_name}")

    def _migrate_product(
        self,
        card_update: CardUpdate,
        now: datetime,
        result: MigrationResult,
        errors: list[Issue],
        warnings: list[str],
    ) -> None:
        unreadable: list[UserDataError] = []
        try:
            accounts = self.store.find_accounts_by_product(card_update.card_name, on_error=unreadable.append)
        except PerkcycleError as exc:
            errors.append(Issue(
                type=ErrorType.DATABASE,
                message=f"Could not load accounts for {card_update.card_name}",
                details={"error": str(exc)},
            ))
            return

        for exc in unreadable:
            result.failed_accounts += 1
            errors.append(Issue(
                type=ErrorType.USER_DATA,
                message=f"Failed to migrate card for user {exc.user_email}",
                account_id=exc.account_id,
                user_id=exc.user_id,
                user_email=exc.user_email,
                details={"error": str(exc), "cause": exc.error_type.value},
            ))
        if unreadable and self.options.stop_on_first_error:
            logger.warning(f"Skipping {card_update.card_name} accounts: stopping on first error")
            return

        logger.info(f'Found {len(accounts)} existing "{card_update.card_name}" accounts to migrate')
        if not accounts:
            return

        def should_stop(outcomes: list[Outcome]) -> bool:
            return self.options.stop_on_first_error and (
                bool(errors) or any(not outcome.ok for outcome in outcomes)
            )

        outcomes = run_in_batches(
            accounts,
            lambda account: self._migrate_account(account, card_update, now),
            self.options.batch_size,
            should_stop=should_stop,
        )

        for outcome in outcomes:
            account = outcome.item
            if outcome.ok:
                migrated: AccountOutcome = outcome.value
                result.affected_accounts += 1
                result.benefits_created += migrated.created
                result.benefits_deleted += migrated.deleted
                warnings.extend(migrated.warnings)
                logger.info(
                    f"Migrated account {account.id} for {account.user_email} "
                    f"({migrated.created} created, {migrated.deleted} deleted)"
                )
                continue

            error = outcome.error
            result.failed_accounts += 1
            details = {"error": str(error)}
            if isinstance(error, PerkcycleError):
                details["cause"] = error.error_type.value
            errors.append(Issue(
                type=ErrorType.USER_DATA,
                message=f"Failed to migrate card for user {account.user_email}",
                account_id=account.id,
                user_id=account.user_id,
                user_email=account.user_email,
                details=details,
            ))
            logger.error(f"Failed to migrate account {account.id} for {account.user_email}: {error}")

    def _coexistence_warnings(self, account: AccountSnapshot, card_update: CardUpdate) -> list[str]:
        if not self.options.preserve_protected_state:
            return []
        return [
            f'Account {account.id}: kept protected benefit "{kept.description}" '
            "alongside its replacement from the plan"
            for kept in account.protected_benefits
            if any(definition.same_benefit_as(kept.category, kept.description) for definition in card_update.benefits)
        ]

    def _cycle_for(
        self,
        definition: BenefitDefinition,
        account: AccountSnapshot,
        card_update: CardUpdate,
        now: datetime,
    ) -> BenefitCycle:
        if definition.is_one_time:
            return compute_one_time_lifetime(normalize_cycle_date(card_update.effective_date))

        raw = calculate_cycle(definition.schedule, now, account.opened_date)
        # Status rows are keyed on cycle start; keep it at midnight UTC
        cycle = BenefitCycle(start=normalize_cycle_date(raw.start), end=raw.end)

        if self.options.validate_cycles:
            validation = validate_cycle(definition, cycle)
            if not validation.ok:
                raise PlanValidationError(f"Benefit validation failed: {validation.reason}")
        return cycle

    def _migrate_account(self, account: AccountSnapshot, card_update: CardUpdate, now: datetime) -> AccountOutcome:
        doomed_ids = [benefit.id for benefit in benefits_to_delete(account, self.options.preserve_protected_state)]
        kept_count = len(account.benefits) - len(doomed_ids)
        warnings = tuple(self._coexistence_warnings(account, card_update))

        if self.options.dry_run:
            return AccountOutcome(created=len(card_update.benefits), deleted=len(doomed_ids), warnings=warnings)

        if self.options.backup_writer is not None:
            self.options.backup_writer(account)

        created = 0
        with self.store.account_transaction(account.id) as tx:
            tx.delete_statuses(doomed_ids)
            deleted = tx.delete_benefits(doomed_ids)
            tx.touch_account()

            start_date = as_utc(card_update.effective_date)
            for position, definition in enumerate(card_update.benefits, start=kept_count):
                cycle = self._cycle_for(definition, account, card_update, now)
                benefit_id = tx.create_benefit(definition, position, start_date)
                for occurrence_index in range(definition.occurrences_in_cycle):
                    tx.upsert_status(
                        StatusKey(
                            benefit_id=benefit_id,
                            user_id=account.user_id,
                            cycle_start_date=cycle.start,
                            occurrence_index=occurrence_index,
                        ),
                        cycle.end,
                    )
                created += 1

        return AccountOutcome(created=created, deleted=deleted, warnings=warnings)

    def _summary(self, result: MigrationResult) -> str:
        mode = "DRY RUN - " if result.dry_run else ""
        summary = (
            f"{mode}Affected {result.affected_accounts} accounts. "
            f"Created {result.benefits_created} benefits, deleted {result.benefits_deleted} benefits."
        )
        if result.failed_accounts:
            summary += f" {result.failed_accounts} accounts failed."
        return summary
