"""Benefit cycle validation.

Cross-checks a calculated cycle against structural hints in the benefit's
description. Only patterns that have actually gone wrong are checked:

- "Qn: Mon-Mon" quarter labels (a Q3 benefit once received Q1 dates)
- descriptions naming December

Validation is advisory. Callers decide whether a failure is a warning or a
hard stop (migration pre-flight treats it as fatal).
"""
import re
from dataclasses import dataclass
from typing import Protocol

from perkcycle.services.benefit_cycles import BenefitCycle

QUARTER_MARKER = re.compile(r"Q(\d): (\w+)-(\w+)")

QUARTERS = {
    "1": (1, "Jan-Mar"),
    "2": (4, "Apr-Jun"),
    "3": (7, "Jul-Sep"),
    "4": (10, "Oct-Dec"),
}


class CycleDescriptor(Protocol):
    description: str
    fixed_cycle_start_month: int | None
    fixed_cycle_duration_months: int | None


@dataclass(frozen=True)
class CycleValidation:
    ok: bool
    reason: str | None = None


VALID = CycleValidation(ok=True)


def _months_apart(actual: int, expected: int) -> int:
    diff = abs(actual - expected) % 12
    return min(diff, 12 - diff)


def validate_quarter_label(benefit: CycleDescriptor, cycle: BenefitCycle) -> CycleValidation:
    """Check that a "Qn: Mon-Mon" benefit starts in quarter n's first month."""
    match = QUARTER_MARKER.search(benefit.description)
    if not match:
        return VALID

    quarter = match.group(1)
    if quarter not in QUARTERS:
        return CycleValidation(ok=False, reason=f'Unknown quarter "Q{quarter}" in benefit description')
    expected_start, months = QUARTERS[quarter]

    duration = benefit.fixed_cycle_duration_months
    if duration is not None and duration != 3:
        return CycleValidation(
            ok=False,
            reason=f"Q{quarter} benefit should have fixed_cycle_duration_months=3, got {duration}",
        )

    actual_start = cycle.start_month
    if actual_start != expected_start:
        return CycleValidation(
            ok=False,
            reason=(
                f'Q{quarter} benefit "{benefit.description}" has wrong cycle start month. '
                f"Expected: {expected_start} ({months}), Got: {actual_start}. "
                "This indicates a cycle calculation bug."
            ),
        )

    # End month may drift by one for day-count reasons
    expected_end = expected_start + 2
    if _months_apart(cycle.end_month, expected_end) > 1:
        return CycleValidation(
            ok=False,
            reason=(
                f'Q{quarter} benefit "{benefit.description}" has wrong cycle end month. '
                f"Expected: {expected_end} ({months}), Got: {cycle.end_month}."
            ),
        )

    return VALID


def validate_month_name(benefit: CycleDescriptor, cycle: BenefitCycle) -> CycleValidation:
    """Check that a benefit describing December runs in December."""
    if "december" not in benefit.description.lower():
        return VALID

    if cycle.start_month != 12 or cycle.end_month != 12:
        actual = cycle.start_month if cycle.start_month != 12 else cycle.end_month
        return CycleValidation(
            ok=False,
            reason=(
                f'December benefit "{benefit.description}" has a cycle running from month '
                f"{cycle.start_month} to {cycle.end_month}. Expected: 12, Got: {actual}."
            ),
        )
    return VALID


CHECKS = (validate_quarter_label, validate_month_name)


def validate_cycle(benefit: CycleDescriptor, cycle: BenefitCycle) -> CycleValidation:
    """Run every check; the first failure wins."""
    for check in CHECKS:
        result = check(benefit, cycle)
        if not result.ok:
            return result
    return VALID
