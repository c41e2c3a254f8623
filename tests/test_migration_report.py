from datetime import datetime, timezone

from perkcycle.services.migration_report import format_validation_report, validate_migration
from perkcycle.services.plan_builder import MigrationPlanBuilder

NOW = datetime(2025, 9, 26, tzinfo=timezone.utc)


def _plan(benefit):
    card = MigrationPlanBuilder(id="report", title="Report").add_card_update("Test Card", "Test Bank")
    card.add_benefit(benefit)
    return card.finish_card().build()


GOOD = {
    "category": "Dining",
    "description": "Q3: Jul-Sep - Exclusive Tables",
    "frequency": "QUARTERLY",
    "cycle_alignment": "CALENDAR_FIXED",
    "fixed_cycle_start_month": 7,
    "fixed_cycle_duration_months": 3,
}


def test_new_card_passes_with_warnings(store):
    report = validate_migration(_plan(GOOD), store, NOW)

    assert report.is_valid
    assert report.summary.startswith("VALIDATION PASSED WITH WARNINGS")
    titles = [check.title for check in report.checks]
    assert "Card Product Not Found" in titles
    assert "Benefit Definition Valid" in titles
    assert "QUARTERLY BENEFITS: Verify quarter alignments are correct" in report.recommendations


def test_mislabelled_quarter_fails(store):
    report = validate_migration(_plan({**GOOD, "fixed_cycle_start_month": 1}), store, NOW)

    assert not report.is_valid
    assert report.summary.startswith("VALIDATION FAILED: 1 errors")
    assert report.recommendations[0].startswith("CRITICAL")


def test_protected_accounts_and_percentages_are_flagged(store, seed_account):
    seed_account("alice@example.com", benefits=[{
        "description": "Old credit",
        "frequency": "MONTHLY",
        "statuses": [{
            "cycle_start_date": "2025-09-01T00:00:00.000Z",
            "cycle_end_date": "2025-09-30T23:59:59.999Z",
            "is_completed": 1,
        }],
    }])
    plan = _plan({"category": "Dining", "description": "Cashback", "frequency": "MONTHLY", "percentage": 150})

    report = validate_migration(plan, store, NOW)

    by_title = {check.title: check for check in report.checks}
    assert by_title["Accounts Have Completed Benefits"].affected_count == 1
    assert by_title["Benefit Structure Change"].details["old_benefit_count"] == 1
    assert by_title["Unusual Percentage Value"].status == "warning"
    assert by_title["Account Cards Found"].status == "pass"


def test_unreadable_accounts_are_flagged(store, seed_account):
    seed_account("bob@example.com", settings="{not json")

    report = validate_migration(_plan(GOOD), store, NOW)

    by_title = {check.title: check for check in report.checks}
    assert by_title["Unreadable Accounts"].status == "warning"
    assert by_title["Unreadable Accounts"].affected_count == 1
    assert report.is_valid


def test_report_formatting_groups_by_category(store):
    text = format_validation_report(validate_migration(_plan(GOOD), store, NOW))

    assert "MIGRATION VALIDATION REPORT" in text
    assert "DATA INTEGRITY" in text
    assert "BENEFIT VALIDATION" in text
    assert "[WARNING] Card Product Not Found" in text
    assert "RECOMMENDATIONS" in text
