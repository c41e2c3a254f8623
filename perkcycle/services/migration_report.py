"""Read-only validation report for a migration plan.

Looks at the plan and the current Store contents without writing anything,
and says whether the plan is safe to run and what it would touch.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from perkcycle.errors import UserDataError
from perkcycle.schemas.plan import MigrationPlan
from perkcycle.services.benefit_cycles import BenefitFrequency
from perkcycle.services.migration_engine import check_benefit_definition
from perkcycle.store import BenefitStore

logger = logging.getLogger(__name__)

CATEGORIES = ("data_integrity", "benefit_validation", "user_impact", "schema_compatibility")

# Above this many accounts a smaller batch size is recommended
HIGH_IMPACT_ACCOUNTS = 50


@dataclass(frozen=True)
class ValidationCheck:
    category: str
    status: str  # pass | fail | warning
    title: str
    message: str
    affected_count: int | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationReport:
    checks: list[ValidationCheck]
    recommendations: list[str]

    @property
    def is_valid(self) -> bool:
        return not any(check.status == "fail" for check in self.checks)

    def count(self, status: str) -> int:
        return sum(1 for check in self.checks if check.status == status)

    @property
    def summary(self) -> str:
        passed, failed, warned = self.count("pass"), self.count("fail"), self.count("warning")
        if failed:
            return f"VALIDATION FAILED: {failed} errors, {warned} warnings, {passed} passed"
        if warned:
            return f"VALIDATION PASSED WITH WARNINGS: {warned} warnings, {passed} passed"
        return f"VALIDATION PASSED: All {passed} checks successful"


def _check_data_integrity(plan: MigrationPlan, store: BenefitStore) -> list[ValidationCheck]:
    checks = []
    for card_update in plan.card_updates:
        template = store.get_product_template(card_update.card_name)
        if template is None:
            checks.append(ValidationCheck(
                category="data_integrity",
                status="warning",
                title="Card Product Not Found",
                message=f'Card product "{card_update.card_name}" not found - will be created',
                details={"card_name": card_update.card_name},
            ))
        else:
            checks.append(ValidationCheck(
                category="data_integrity",
                status="pass",
                title="Card Product Exists",
                message=(
                    f'Found card product "{card_update.card_name}" '
                    f"with {len(template.benefit_descriptions)} template benefits"
                ),
                details={"card_name": card_update.card_name, "product_id": template.id},
            ))

        count = store.count_accounts_by_product(card_update.card_name)
        checks.append(ValidationCheck(
            category="data_integrity",
            status="pass" if count else "warning",
            title="Account Cards Found",
            message=(
                f'Found {count} account cards named "{card_update.card_name}"'
                if count
                else f'No account cards named "{card_update.card_name}" - only the template will be updated'
            ),
            affected_count=count,
            details={"card_name": card_update.card_name},
        ))
    return checks


def _check_benefit_definitions(plan: MigrationPlan, now: datetime) -> list[ValidationCheck]:
    checks = []
    for card_update in plan.card_updates:
        for definition in card_update.benefits:
            preflight = check_benefit_definition(definition, now)
            if preflight.failed:
                title = (
                    "Benefit Cycle Calculation Failed"
                    if preflight.check_type == "cycle_calculation"
                    else "Benefit Cycle Validation Failed"
                )
            else:
                title = "Benefit Definition Valid"
            checks.append(ValidationCheck(
                category="benefit_validation",
                status=preflight.status,
                title=title,
                message=f"{card_update.card_name}: {preflight.message}",
                details=preflight.details,
            ))
    return checks


def _check_user_impact(plan: MigrationPlan, store: BenefitStore) -> list[ValidationCheck]:
    checks = []
    for card_update in plan.card_updates:
        unreadable: list[UserDataError] = []
        accounts = store.find_accounts_by_product(card_update.card_name, on_error=unreadable.append)

        if unreadable:
            checks.append(ValidationCheck(
                category="user_impact",
                status="warning",
                title="Unreadable Accounts",
                message=f"{len(unreadable)} accounts could not be read and will be reported as failed",
                affected_count=len(unreadable),
                details={
                    "card_name": card_update.card_name,
                    "accounts": [{"account_id": exc.account_id, "error": str(exc)} for exc in unreadable],
                },
            ))

        protected = [account for account in accounts if account.protected_benefits]
        if protected:
            checks.append(ValidationCheck(
                category="user_impact",
                status="warning",
                title="Accounts Have Completed Benefits",
                message=(
                    f"{len(protected)} accounts have completed or not-usable benefits that will be preserved"
                ),
                affected_count=len(protected),
                details={
                    "card_name": card_update.card_name,
                    "accounts": [
                        {"email": account.user_email, "protected_benefits": len(account.protected_benefits)}
                        for account in protected
                    ],
                },
            ))

        existing = sum(len(account.benefits) for account in accounts)
        if existing:
            checks.append(ValidationCheck(
                category="user_impact",
                status="pass",
                title="Benefit Structure Change",
                message=(
                    f"Will replace {existing} existing benefits across {len(accounts)} accounts "
                    f"with {len(card_update.benefits)} new benefits each"
                ),
                affected_count=len(accounts),
                details={
                    "card_name": card_update.card_name,
                    "old_benefit_count": existing,
                    "new_benefit_count": len(card_update.benefits),
                },
            ))
    return checks


def _check_schema_compatibility(plan: MigrationPlan) -> list[ValidationCheck]:
    checks = []
    for card_update in plan.card_updates:
        for definition in card_update.benefits:
            if not 0 <= definition.percentage <= 100:
                checks.append(ValidationCheck(
                    category="schema_compatibility",
                    status="warning",
                    title="Unusual Percentage Value",
                    message=(
                        f'Benefit "{definition.description}" has percentage {definition.percentage}% '
                        "(outside typical 0-100% range)"
                    ),
                ))
    if not checks:
        checks.append(ValidationCheck(
            category="schema_compatibility",
            status="pass",
            title="Schema Compatibility",
            message="All benefit definitions are schema-compatible",
        ))
    return checks


def _recommendations(checks: list[ValidationCheck], plan: MigrationPlan) -> list[str]:
    recommendations = []
    if any(check.status == "fail" for check in checks):
        recommendations.append("CRITICAL: Fix validation failures before proceeding with migration")
        recommendations.append("   Use --dry-run to test fixes without modifying data")
    if any(check.status == "warning" for check in checks):
        recommendations.append("Review warnings - these may indicate unexpected behavior")

    if any(
        check.category == "user_impact" and (check.affected_count or 0) > HIGH_IMPACT_ACCOUNTS
        for check in checks
    ):
        recommendations.append("HIGH IMPACT: Consider smaller batch sizes for cards held by many accounts")
        recommendations.append("   Use --batch-size=5 to process accounts more carefully")

    if any(
        definition.frequency == BenefitFrequency.QUARTERLY
        for card_update in plan.card_updates
        for definition in card_update.benefits
    ):
        recommendations.append("QUARTERLY BENEFITS: Verify quarter alignments are correct")

    recommendations.append("Run with --dry-run first to preview changes")
    return recommendations


def validate_migration(plan: MigrationPlan, store: BenefitStore, now: datetime | None = None) -> ValidationReport:
    """Run every read-only check against ``plan``."""
    now = now or datetime.now(timezone.utc)
    checks = [
        *_check_data_integrity(plan, store),
        *_check_benefit_definitions(plan, now),
        *_check_user_impact(plan, store),
        *_check_schema_compatibility(plan),
    ]
    report = ValidationReport(checks=checks, recommendations=_recommendations(checks, plan))
    logger.info(f"Plan {plan.id}: {report.summary}")
    return report


def format_validation_report(report: ValidationReport) -> str:
    lines = ["=" * 60, "MIGRATION VALIDATION REPORT", "=" * 60, report.summary, ""]

    for category in CATEGORIES:
        category_checks = [check for check in report.checks if check.category == category]
        if not category_checks:
            continue
        lines.append(category.replace("_", " ").upper())
        lines.append("-" * 40)
        for check in category_checks:
            lines.append(f"[{check.status.upper()}] {check.title}: {check.message}")
            if check.affected_count is not None:
                lines.append(f"   Affected count: {check.affected_count}")
        lines.append("")

    if report.recommendations:
        lines.append("RECOMMENDATIONS")
        lines.append("-" * 40)
        lines.extend(report.recommendations)
        lines.append("")

    lines.append("=" * 60)
    return "\n".join(lines)
