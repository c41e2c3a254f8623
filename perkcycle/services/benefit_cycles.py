"""Benefit cycle calculation service.

All arithmetic happens in UTC. A cycle is reported as ``[start, end]`` where
``end`` is the last millisecond before the next window begins.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Union

from dateutil.relativedelta import relativedelta

from perkcycle.errors import InvalidCycleError, UnsupportedFrequencyError

ONE_MILLISECOND = timedelta(milliseconds=1)
ONE_TIME_LIFETIME_YEARS = 10

# Q1: Jan-Mar, Q2: Apr-Jun, Q3: Jul-Sep, Q4: Oct-Dec
QUARTER_START_MONTHS = (1, 4, 7, 10)


class BenefitFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    ONE_TIME = "ONE_TIME"


class CycleAlignment(str, Enum):
    CARD_ANNIVERSARY = "CARD_ANNIVERSARY"
    CALENDAR_FIXED = "CALENDAR_FIXED"


@dataclass(frozen=True)
class Monthly:
    """Calendar month containing the reference instant."""


@dataclass(frozen=True)
class Quarterly:
    """Calendar quarter containing the reference instant."""


@dataclass(frozen=True)
class Yearly:
    """Twelve-month window, anchored to the card anniversary when one is known."""

    anniversary: bool = True


@dataclass(frozen=True)
class FixedWindow:
    """Year-repeating window of ``duration_months`` starting at ``start_month``."""

    start_month: int
    duration_months: int

    def __post_init__(self) -> None:
        if not 1 <= self.start_month <= 12:
            raise ValueError(f"start_month must be 1-12, got {self.start_month}")
        if self.duration_months < 1:
            raise ValueError(f"duration_months must be positive, got {self.duration_months}")


@dataclass(frozen=True)
class OneTime:
    """Non-recurring benefit; see compute_one_time_lifetime."""


CycleSchedule = Union[Monthly, Quarterly, Yearly, FixedWindow, OneTime]


@dataclass(frozen=True)
class BenefitCycle:
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= as_utc(instant) <= self.end

    @property
    def start_month(self) -> int:
        return self.start.month

    @property
    def end_month(self) -> int:
        return self.end.month


def as_utc(value: date | datetime) -> datetime:
    """Coerce a date or datetime to an aware UTC datetime.

    Naive datetimes are taken to already be in UTC; plain dates become midnight.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def normalize_cycle_date(value: date | datetime) -> datetime:
    """Truncate an instant to midnight UTC on the same calendar day.

    Status rows are keyed on cycle start, so two starts on the same day must
    compare equal.
    """
    instant = as_utc(value)
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def format_cycle_instant(value: datetime) -> str:
    """Render an instant the way it is stored: ``2025-07-01T00:00:00.000Z``."""
    instant = as_utc(value)
    return instant.strftime("%Y-%m-%dT%H:%M:%S.") + f"{instant.microsecond // 1000:03d}Z"


def parse_cycle_instant(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


def schedule_for(
    frequency: BenefitFrequency | str,
    alignment: CycleAlignment | str | None = None,
    fixed_start_month: int | None = None,
    fixed_duration_months: int | None = None,
) -> CycleSchedule:
    """Fold the stored frequency/alignment columns into a single schedule.

    A CALENDAR_FIXED alignment overrides the frequency only when both fixed
    fields are present and in range; otherwise the frequency decides.
    """
    try:
        frequency = BenefitFrequency(frequency)
    except ValueError as exc:
        raise UnsupportedFrequencyError(f"Unknown frequency: {frequency}") from exc
    try:
        alignment = CycleAlignment(alignment) if alignment else None
    except ValueError as exc:
        raise InvalidCycleError(f"Unknown cycle alignment: {alignment}") from exc

    if frequency == BenefitFrequency.ONE_TIME:
        return OneTime()

    if (
        alignment == CycleAlignment.CALENDAR_FIXED
        and fixed_start_month is not None
        and fixed_duration_months is not None
        and 1 <= fixed_start_month <= 12
        and fixed_duration_months > 0
    ):
        return FixedWindow(fixed_start_month, fixed_duration_months)

    if frequency == BenefitFrequency.MONTHLY:
        return Monthly()
    if frequency == BenefitFrequency.QUARTERLY:
        return Quarterly()
    return Yearly(anniversary=alignment != CycleAlignment.CALENDAR_FIXED)


def requires_opened_date(schedule: CycleSchedule) -> bool:
    """True when the schedule can only be anchored with an account opened date."""
    return isinstance(schedule, Yearly) and schedule.anniversary


def _window(start: datetime, months: int) -> BenefitCycle:
    try:
        end = start + relativedelta(months=months) - ONE_MILLISECOND
    except (OverflowError, ValueError) as exc:
        raise InvalidCycleError(f"Cycle starting {start.isoformat()} runs past the supported date range") from exc
    if end <= start:
        raise InvalidCycleError(
            f"Calculated cycle end {end.isoformat()} is not after cycle start {start.isoformat()}"
        )
    return BenefitCycle(start=start, end=end)


def _month_start(year: int, month: int) -> datetime:
    try:
        return datetime(year, month, 1, tzinfo=timezone.utc)
    except ValueError as exc:
        raise InvalidCycleError(f"Could not build a cycle start for {year}-{month:02d}") from exc


def _fixed_window_cycle(schedule: FixedWindow, reference: datetime) -> BenefitCycle:
    # A window that wraps the year end (e.g. Nov-Jan) may still be running from last year
    previous = _window(_month_start(reference.year - 1, schedule.start_month), schedule.duration_months)
    if previous.contains(reference):
        return previous

    current = _window(_month_start(reference.year, schedule.start_month), schedule.duration_months)
    if reference <= current.end:
        return current
    return _window(_month_start(reference.year + 1, schedule.start_month), schedule.duration_months)


def calculate_cycle(
    schedule: CycleSchedule,
    reference: date | datetime,
    opened_date: date | datetime | None = None,
) -> BenefitCycle:
    """Calculate the cycle of ``schedule`` in effect at ``reference``.

    Args:
        schedule: Monthly, Quarterly, Yearly, FixedWindow (OneTime is rejected)
        reference: The instant to find the cycle for
        opened_date: Account opened date; anchors anniversary Yearly schedules

    Returns:
        BenefitCycle with inclusive start and end instants (UTC)

    Raises:
        UnsupportedFrequencyError: for OneTime schedules
        InvalidCycleError: if the window would be empty or out of range
    """
    reference = as_utc(reference)

    if isinstance(schedule, FixedWindow):
        return _fixed_window_cycle(schedule, reference)

    if isinstance(schedule, Monthly):
        return _window(_month_start(reference.year, reference.month), 1)

    if isinstance(schedule, Quarterly):
        start_month = QUARTER_START_MONTHS[(reference.month - 1) // 3]
        return _window(_month_start(reference.year, start_month), 3)

    if isinstance(schedule, Yearly):
        if schedule.anniversary and opened_date is not None:
            anniversary_month = as_utc(opened_date).month
            # Before the anniversary month the cycle started last year
            start_year = reference.year if reference.month >= anniversary_month else reference.year - 1
            return _window(_month_start(start_year, anniversary_month), 12)
        # Calendar year
        return _window(_month_start(reference.year, 1), 12)

    if isinstance(schedule, OneTime):
        raise UnsupportedFrequencyError(
            "Unsupported frequency for cycle calculation: ONE_TIME (use compute_one_time_lifetime)"
        )

    raise UnsupportedFrequencyError(f"Unknown cycle schedule: {schedule!r}")


def compute_cycle(
    frequency: BenefitFrequency | str,
    reference: date | datetime,
    opened_date: date | datetime | None = None,
    alignment: CycleAlignment | str | None = None,
    fixed_start_month: int | None = None,
    fixed_duration_months: int | None = None,
) -> BenefitCycle:
    """Calculate a cycle straight from a benefit's stored columns."""
    schedule = schedule_for(frequency, alignment, fixed_start_month, fixed_duration_months)
    return calculate_cycle(schedule, reference, opened_date)


def compute_one_time_lifetime(activation: date | datetime) -> BenefitCycle:
    """Usable lifetime of a one-time benefit: activation through the same day ten years on.

    The day of month is preserved. A Feb 29 activation lands on Feb 28 when
    the target year is not a leap year (relativedelta clamps to month end).
    """
    start = as_utc(activation)
    try:
        last_day = start + relativedelta(years=ONE_TIME_LIFETIME_YEARS)
    except (OverflowError, ValueError) as exc:
        raise InvalidCycleError(f"One-time lifetime from {start.isoformat()} runs past the supported date range") from exc
    end = last_day.replace(hour=23, minute=59, second=59, microsecond=999000)
    if end <= start:
        raise InvalidCycleError("Calculated one-time lifetime end is not after its start.")
    return BenefitCycle(start=start, end=end)


def days_remaining_in_cycle(cycle_end: datetime, now: datetime | None = None) -> int:
    """Whole days left before a cycle closes."""
    if now is None:
        now = datetime.now(timezone.utc)
    delta = as_utc(cycle_end) - as_utc(now)
    return max(0, delta.days)


def is_cycle_expiring_soon(cycle_end: datetime, threshold_days: int = 7, now: datetime | None = None) -> bool:
    if now is not None and as_utc(cycle_end) < as_utc(now):
        return False
    return days_remaining_in_cycle(cycle_end, now) <= threshold_days
