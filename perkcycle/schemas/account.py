"""Read-only snapshots of stored accounts, benefits and statuses.

Snapshots are detached from any session so they can be handed to worker
threads.
"""
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, field_validator

from perkcycle.services.benefit_cycles import CycleSchedule, schedule_for


class StatusSnapshot(BaseModel):
    """One stored BenefitStatus row."""

    id: str
    benefit_id: str
    user_id: str
    cycle_start_date: datetime
    cycle_end_date: datetime
    occurrence_index: int
    is_completed: bool = False
    completed_at: str | None = None
    is_not_usable: bool = False
    used_amount: float = 0.0

    @field_validator("is_completed", "is_not_usable", mode="before")
    @classmethod
    def int_to_bool(cls, v: Any) -> bool:
        if v is None:
            return False
        if isinstance(v, int):
            return bool(v)
        return v

    @field_validator("used_amount", mode="before")
    @classmethod
    def default_amount(cls, v: Any) -> float:
        return 0.0 if v is None else v

    class Config:
        from_attributes = True

    @property
    def is_protected(self) -> bool:
        """Completed or not-usable rows record account-holder decisions."""
        return self.is_completed or self.is_not_usable


class BenefitSnapshot(BaseModel):
    """A benefit bound to an account, with its status history."""

    id: str
    category: str
    description: str
    percentage: float = 0.0
    max_amount: float | None = None
    frequency: str
    cycle_alignment: str | None = None
    fixed_cycle_start_month: int | None = None
    fixed_cycle_duration_months: int | None = None
    occurrences_in_cycle: int = 1
    statuses: list[StatusSnapshot] = []

    class Config:
        from_attributes = True

    @property
    def is_protected(self) -> bool:
        return any(status.is_protected for status in self.statuses)

    @property
    def schedule(self) -> CycleSchedule:
        return schedule_for(
            self.frequency,
            self.cycle_alignment,
            self.fixed_cycle_start_month,
            self.fixed_cycle_duration_months,
        )


class AccountSnapshot(BaseModel):
    """One account's card and everything bound to it."""

    id: str
    user_id: str
    user_email: str
    card_name: str
    opened_date: date | None = None
    notifications_enabled: bool = True
    benefits: list[BenefitSnapshot] = []

    @property
    def protected_benefits(self) -> list[BenefitSnapshot]:
        return [benefit for benefit in self.benefits if benefit.is_protected]

    @property
    def unprotected_benefits(self) -> list[BenefitSnapshot]:
        return [benefit for benefit in self.benefits if not benefit.is_protected]


class ProductTemplateSnapshot(BaseModel):
    """A card product's canonical benefit template."""

    id: str
    name: str
    issuer: str
    annual_fee: int = 0
    benefit_descriptions: list[str] = []
