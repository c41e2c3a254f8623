"""Stored-cycle integrity monitoring.

Re-runs the cycle validator over status rows that are already persisted, so
that a wrongly materialized quarter or December window is reported even if
it slipped past migration pre-flight.
"""
import logging
from dataclasses import asdict, dataclass

from perkcycle.errors import UserDataError
from perkcycle.services.benefit_cycles import BenefitCycle
from perkcycle.services.cycle_validation import validate_month_name, validate_quarter_label
from perkcycle.store import BenefitStore

logger = logging.getLogger(__name__)

CHECKS = (
    ("QUARTERLY_MISMATCH", "Quarterly benefit has wrong cycle dates", validate_quarter_label),
    ("DECEMBER_MISMATCH", "December benefit has wrong cycle dates", validate_month_name),
)


@dataclass(frozen=True)
class IntegrityIssue:
    type: str
    description: str
    benefit_id: str
    user_id: str
    user_email: str
    cycle_info: str
    reason: str

    def to_dict(self) -> dict:
        return asdict(self)


def check_benefit_integrity(store: BenefitStore, limit: int = 100) -> list[IntegrityIssue]:
    """Return up to ``limit`` stored statuses whose cycle contradicts its benefit's label."""
    issues = []
    unreadable: list[UserDataError] = []
    accounts = store.list_accounts(on_error=unreadable.append)
    for exc in unreadable[:limit]:
        issues.append(IntegrityIssue(
            type="UNREADABLE_ACCOUNT",
            description="Account data could not be read",
            benefit_id="",
            user_id=exc.user_id or "",
            user_email=exc.user_email or "",
            cycle_info=f"account {exc.account_id}",
            reason=str(exc),
        ))
    if len(issues) >= limit:
        logger.error(f"Benefit integrity check stopped at {limit} issues")
        return issues

    for account in accounts:
        for benefit in account.benefits:
            for status in benefit.statuses:
                cycle = BenefitCycle(start=status.cycle_start_date, end=status.cycle_end_date)
                for issue_type, description, check in CHECKS:
                    validation = check(benefit, cycle)
                    if validation.ok:
                        continue
                    issues.append(IntegrityIssue(
                        type=issue_type,
                        description=description,
                        benefit_id=benefit.id,
                        user_id=account.user_id,
                        user_email=account.user_email,
                        cycle_info=(
                            f"{benefit.description}: {cycle.start.date().isoformat()} -> {cycle.end.date().isoformat()}"
                        ),
                        reason=validation.reason or "",
                    ))
                    if len(issues) >= limit:
                        logger.error(f"Benefit integrity check stopped at {limit} issues")
                        return issues

    if issues:
        logger.error(f"Found {len(issues)} benefit integrity issues")
        for issue in issues[:10]:
            logger.error(f"{issue.type}: {issue.user_email} {issue.cycle_info}")
    else:
        logger.info("No benefit integrity issues found")
    return issues
