"""Migration plan schemas.

Plan documents are accepted with either camelCase (``cardUpdates``) or
snake_case keys.
"""
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from perkcycle.services.benefit_cycles import (
    BenefitFrequency,
    CycleAlignment,
    CycleSchedule,
    schedule_for,
)


class BenefitDefinition(BaseModel):
    """Template for one recurring benefit."""

    category: str = Field(min_length=1)
    description: str = Field(min_length=1)
    percentage: float = 0.0
    max_amount: float | None = None
    frequency: BenefitFrequency
    cycle_alignment: CycleAlignment | None = None
    fixed_cycle_start_month: int | None = Field(None, ge=1, le=12)
    fixed_cycle_duration_months: int | None = Field(None, gt=0)
    occurrences_in_cycle: int = Field(1, ge=1)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    @model_validator(mode="after")
    def check_fixed_window(self) -> "BenefitDefinition":
        has_start = self.fixed_cycle_start_month is not None
        has_duration = self.fixed_cycle_duration_months is not None
        is_fixed = self.cycle_alignment == CycleAlignment.CALENDAR_FIXED

        if (has_start or has_duration) and not is_fixed:
            raise ValueError(
                f'Benefit "{self.description}": fixed cycle fields require cycle_alignment=CALENDAR_FIXED'
            )
        if is_fixed and not (has_start and has_duration):
            raise ValueError(
                f'Benefit "{self.description}": CALENDAR_FIXED requires both '
                "fixed_cycle_start_month and fixed_cycle_duration_months"
            )
        return self

    @property
    def schedule(self) -> CycleSchedule:
        return schedule_for(
            self.frequency,
            self.cycle_alignment,
            self.fixed_cycle_start_month,
            self.fixed_cycle_duration_months,
        )

    @property
    def is_one_time(self) -> bool:
        return self.frequency == BenefitFrequency.ONE_TIME

    def same_benefit_as(self, category: str, description: str) -> bool:
        return self.category.lower() == category.lower() and self.description.lower() == description.lower()


class CardUpdate(BaseModel):
    """The benefit set one card product should have from ``effective_date``."""

    card_name: str = Field(min_length=1)
    issuer: str = Field(min_length=1)
    new_annual_fee: int | None = Field(None, ge=0)
    effective_date: date = Field(default_factory=lambda: datetime.now(timezone.utc).date())
    migration_notes: str | None = None
    benefits: list[BenefitDefinition] = Field(default_factory=list)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True


class MigrationPlan(BaseModel):
    """A named, versioned set of card updates."""

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    version: str = "1.0.0"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    dry_run_only: bool = False
    card_updates: list[CardUpdate] = Field(min_length=1)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    @property
    def benefit_count(self) -> int:
        return sum(len(update.benefits) for update in self.card_updates)
