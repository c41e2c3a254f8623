from datetime import date, datetime, timezone

import pytest

from perkcycle.errors import InvalidCycleError, UnsupportedFrequencyError
from perkcycle.services.benefit_cycles import (
    FixedWindow,
    Monthly,
    OneTime,
    Quarterly,
    Yearly,
    calculate_cycle,
    compute_cycle,
    compute_one_time_lifetime,
    days_remaining_in_cycle,
    format_cycle_instant,
    is_cycle_expiring_soon,
    normalize_cycle_date,
    parse_cycle_instant,
    schedule_for,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_q3_fixed_window_is_july_through_september():
    cycle = compute_cycle(
        "QUARTERLY",
        utc(2025, 9, 26),
        alignment="CALENDAR_FIXED",
        fixed_start_month=7,
        fixed_duration_months=3,
    )

    assert cycle.start == utc(2025, 7, 1)
    assert cycle.end == utc(2025, 9, 30, 23, 59, 59, 999000)


def test_anniversary_before_anniversary_month_starts_previous_year():
    cycle = compute_cycle("YEARLY", utc(2023, 7, 15), opened_date=date(2022, 11, 20), alignment="CARD_ANNIVERSARY")

    assert cycle.start == utc(2022, 11, 1)
    assert cycle.end == utc(2023, 10, 31, 23, 59, 59, 999000)


def test_anniversary_on_or_after_anniversary_month_starts_this_year():
    cycle = compute_cycle("YEARLY", utc(2023, 5, 15), opened_date=date(2022, 4, 10))

    assert cycle.start == utc(2023, 4, 1)
    assert cycle.end == utc(2024, 3, 31, 23, 59, 59, 999000)


def test_yearly_without_opened_date_is_calendar_year():
    cycle = compute_cycle("YEARLY", utc(2023, 7, 15))

    assert cycle.start == utc(2023, 1, 1)
    assert cycle.end == utc(2023, 12, 31, 23, 59, 59, 999000)


def test_calendar_fixed_yearly_ignores_opened_date():
    cycle = compute_cycle("YEARLY", utc(2023, 7, 15), opened_date=date(2022, 11, 20), alignment="CALENDAR_FIXED")

    assert cycle.start == utc(2023, 1, 1)


def test_monthly_covers_leap_february():
    cycle = calculate_cycle(Monthly(), utc(2024, 2, 15, 12, 30))

    assert cycle.start == utc(2024, 2, 1)
    assert cycle.end == utc(2024, 2, 29, 23, 59, 59, 999000)


def test_quarterly_uses_calendar_quarter():
    cycle = calculate_cycle(Quarterly(), utc(2025, 11, 5))

    assert cycle.start == utc(2025, 10, 1)
    assert cycle.end == utc(2025, 12, 31, 23, 59, 59, 999000)


def test_fixed_window_rolls_forward_after_it_closes():
    cycle = calculate_cycle(FixedWindow(start_month=1, duration_months=6), utc(2025, 9, 1))

    assert cycle.start == utc(2026, 1, 1)
    assert cycle.end == utc(2026, 6, 30, 23, 59, 59, 999000)


def test_fixed_window_wrapping_year_end_uses_running_window():
    cycle = calculate_cycle(FixedWindow(start_month=11, duration_months=3), utc(2025, 1, 15))

    assert cycle.start == utc(2024, 11, 1)
    assert cycle.end == utc(2025, 1, 31, 23, 59, 59, 999000)


def test_naive_and_date_references_are_treated_as_utc():
    from_date = calculate_cycle(Monthly(), date(2025, 3, 10))
    from_naive = calculate_cycle(Monthly(), datetime(2025, 3, 10, 8, 0))

    assert from_date == from_naive
    assert from_date.start == utc(2025, 3, 1)


@pytest.mark.parametrize("frequency", ["MONTHLY", "QUARTERLY", "YEARLY"])
def test_every_recurring_cycle_ends_after_it_starts_and_contains_reference(frequency):
    for month in range(1, 13):
        for day in (1, 15, 28):
            reference = utc(2025, month, day, 6)
            for opened_date in (None, date(2021, 2, 28), date(2020, 12, 31)):
                cycle = compute_cycle(frequency, reference, opened_date=opened_date)
                assert cycle.end > cycle.start
                assert cycle.contains(reference)


def test_every_fixed_window_ends_after_it_starts():
    for start_month in range(1, 13):
        for duration in range(1, 13):
            for month in range(1, 13):
                cycle = calculate_cycle(FixedWindow(start_month, duration), utc(2025, month, 10))
                assert cycle.end > cycle.start
                assert cycle.start.month == start_month
                assert utc(2025, month, 10) <= cycle.end


def test_one_time_frequency_is_rejected_by_recurring_calculator():
    with pytest.raises(UnsupportedFrequencyError):
        compute_cycle("ONE_TIME", utc(2025, 1, 1))

    with pytest.raises(UnsupportedFrequencyError):
        calculate_cycle(OneTime(), utc(2025, 1, 1))


def test_unknown_frequency_is_rejected():
    with pytest.raises(UnsupportedFrequencyError):
        compute_cycle("WEEKLY", utc(2025, 1, 1))


def test_unknown_alignment_is_rejected():
    with pytest.raises(InvalidCycleError):
        schedule_for("QUARTERLY", "BIWEEKLY")


def test_window_past_supported_range_is_invalid():
    with pytest.raises(InvalidCycleError):
        calculate_cycle(Monthly(), utc(9999, 12, 15))


def test_schedule_for_folds_alignment_into_schedule():
    assert schedule_for("MONTHLY") == Monthly()
    assert schedule_for("YEARLY") == Yearly(anniversary=True)
    assert schedule_for("YEARLY", "CALENDAR_FIXED") == Yearly(anniversary=False)
    assert schedule_for("QUARTERLY", "CALENDAR_FIXED", 7, 3) == FixedWindow(7, 3)
    # Out-of-range fixed fields fall back to the frequency
    assert schedule_for("QUARTERLY", "CALENDAR_FIXED", 13, 3) == Quarterly()
    assert schedule_for("ONE_TIME", "CALENDAR_FIXED", 1, 1) == OneTime()


def test_fixed_window_rejects_out_of_range_fields():
    with pytest.raises(ValueError):
        FixedWindow(start_month=13, duration_months=3)
    with pytest.raises(ValueError):
        FixedWindow(start_month=1, duration_months=0)


def test_one_time_lifetime_is_ten_years():
    cycle = compute_one_time_lifetime(date(2025, 6, 23))

    assert cycle.start == utc(2025, 6, 23)
    assert cycle.end == utc(2035, 6, 23, 23, 59, 59, 999000)


def test_one_time_leap_day_activation_clamps_to_february_28():
    cycle = compute_one_time_lifetime(utc(2024, 2, 29))

    assert cycle.end == utc(2034, 2, 28, 23, 59, 59, 999000)


def test_normalize_cycle_date_truncates_to_midnight_utc():
    assert normalize_cycle_date(utc(2025, 7, 1, 15, 30, 12)) == utc(2025, 7, 1)


def test_cycle_instants_round_trip_through_storage_format():
    instant = utc(2025, 9, 30, 23, 59, 59, 999000)

    assert format_cycle_instant(instant) == "2025-09-30T23:59:59.999Z"
    assert parse_cycle_instant("2025-09-30T23:59:59.999Z") == instant


def test_days_remaining_and_expiring_soon():
    end = utc(2025, 9, 30, 23, 59, 59, 999000)
    now = utc(2025, 9, 26)

    assert days_remaining_in_cycle(end, now) == 4
    assert is_cycle_expiring_soon(end, 7, now)
    assert not is_cycle_expiring_soon(end, 3, now)
    assert not is_cycle_expiring_soon(end, 7, utc(2025, 10, 2))
