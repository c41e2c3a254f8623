"""Builders for migration plans.

    plan = (
        MigrationPlanBuilder(id="csr-2025", title="Sapphire Reserve 2025 refresh")
        .add_card_update("Chase Sapphire Reserve", "Chase")
        .set_annual_fee(795)
        .add_quarterly_benefit(quarter=3, category="Dining", description="Exclusive Tables credit", max_amount=150)
        .finish_card()
        .build()
    )
"""
from collections.abc import Mapping
from datetime import date
from typing import Any

from pydantic import ValidationError

from perkcycle.errors import PlanValidationError
from perkcycle.schemas.plan import BenefitDefinition, CardUpdate, MigrationPlan
from perkcycle.services.benefit_cycles import BenefitFrequency, CycleAlignment
from perkcycle.services.cycle_validation import QUARTERS


class CardUpdateBuilder:
    """Collects the benefits of one card update."""

    def __init__(self, plan_builder: "MigrationPlanBuilder", card_name: str, issuer: str):
        self._plan_builder = plan_builder
        self._fields: dict[str, Any] = {"card_name": card_name, "issuer": issuer}
        self._benefits: list[BenefitDefinition] = []

    def set_annual_fee(self, annual_fee: int) -> "CardUpdateBuilder":
        self._fields["new_annual_fee"] = annual_fee
        return self

    def set_effective_date(self, effective_date: date) -> "CardUpdateBuilder":
        self._fields["effective_date"] = effective_date
        return self

    def set_migration_notes(self, notes: str) -> "CardUpdateBuilder":
        self._fields["migration_notes"] = notes
        return self

    def add_benefit(self, benefit: BenefitDefinition | Mapping[str, Any]) -> "CardUpdateBuilder":
        if not isinstance(benefit, BenefitDefinition):
            try:
                benefit = BenefitDefinition.model_validate(benefit)
            except ValidationError as exc:
                raise PlanValidationError(f"Invalid benefit for {self._fields['card_name']}: {exc}") from exc
        self._benefits.append(benefit)
        return self

    def add_monthly_benefit(
        self,
        category: str,
        description: str,
        percentage: float = 0.0,
        max_amount: float | None = None,
        occurrences_in_cycle: int = 1,
    ) -> "CardUpdateBuilder":
        return self.add_benefit({
            "category": category,
            "description": description,
            "percentage": percentage,
            "max_amount": max_amount,
            "frequency": BenefitFrequency.MONTHLY,
            "occurrences_in_cycle": occurrences_in_cycle,
        })

    def add_quarterly_benefit(
        self,
        quarter: int,
        category: str,
        description: str,
        percentage: float = 0.0,
        max_amount: float | None = None,
        occurrences_in_cycle: int = 1,
    ) -> "CardUpdateBuilder":
        """Add a benefit pinned to one calendar quarter.

        The description is prefixed with the quarter label (``Q3: Jul-Sep - ...``)
        and the fixed window is derived from the same table, so the two cannot
        drift apart.
        """
        if str(quarter) not in QUARTERS:
            raise PlanValidationError(f"Quarter must be 1-4, got {quarter}")
        start_month, months = QUARTERS[str(quarter)]
        return self.add_benefit({
            "category": category,
            "description": f"Q{quarter}: {months} - {description}",
            "percentage": percentage,
            "max_amount": max_amount,
            "frequency": BenefitFrequency.QUARTERLY,
            "cycle_alignment": CycleAlignment.CALENDAR_FIXED,
            "fixed_cycle_start_month": start_month,
            "fixed_cycle_duration_months": 3,
            "occurrences_in_cycle": occurrences_in_cycle,
        })

    def add_annual_benefit(
        self,
        category: str,
        description: str,
        percentage: float = 0.0,
        max_amount: float | None = None,
        occurrences_in_cycle: int = 1,
    ) -> "CardUpdateBuilder":
        """Add a YEARLY benefit anchored to each account's card anniversary."""
        return self.add_benefit({
            "category": category,
            "description": description,
            "percentage": percentage,
            "max_amount": max_amount,
            "frequency": BenefitFrequency.YEARLY,
            "cycle_alignment": CycleAlignment.CARD_ANNIVERSARY,
            "occurrences_in_cycle": occurrences_in_cycle,
        })

    def add_one_time_benefit(
        self,
        category: str,
        description: str,
        percentage: float = 0.0,
        max_amount: float | None = None,
    ) -> "CardUpdateBuilder":
        return self.add_benefit({
            "category": category,
            "description": description,
            "percentage": percentage,
            "max_amount": max_amount,
            "frequency": BenefitFrequency.ONE_TIME,
        })

    def build(self) -> CardUpdate:
        try:
            return CardUpdate(**self._fields, benefits=self._benefits)
        except ValidationError as exc:
            raise PlanValidationError(f"Invalid card update for {self._fields['card_name']}: {exc}") from exc

    def finish_card(self) -> "MigrationPlanBuilder":
        return self._plan_builder


class MigrationPlanBuilder:
    """Step-by-step construction of a MigrationPlan."""

    def __init__(
        self,
        id: str,
        title: str,
        description: str = "",
        version: str = "1.0.0",
        dry_run_only: bool = False,
    ):
        self._metadata = {
            "id": id,
            "title": title,
            "description": description,
            "version": version,
            "dry_run_only": dry_run_only,
        }
        self._cards: list[CardUpdateBuilder] = []

    def add_card_update(self, card_name: str, issuer: str) -> CardUpdateBuilder:
        card = CardUpdateBuilder(self, card_name, issuer)
        self._cards.append(card)
        return card

    def build(self) -> MigrationPlan:
        if not self._cards:
            raise PlanValidationError("Migration plan must include at least one card update")
        card_updates = [card.build() for card in self._cards]
        try:
            return MigrationPlan(**self._metadata, card_updates=card_updates)
        except ValidationError as exc:
            raise PlanValidationError(f"Invalid migration plan {self._metadata['id']}: {exc}") from exc


def plan_from_config(config: Mapping[str, Any]) -> MigrationPlan:
    """Build a plan from a plain mapping.

    Accepts the short ``cards`` form (``name``, ``issuer``, ``annual_fee``,
    ``effective_date``, ``benefits``) as well as a full plan document with
    ``card_updates``/``cardUpdates``.
    """
    if "cards" not in config:
        try:
            return MigrationPlan.model_validate(config)
        except ValidationError as exc:
            raise PlanValidationError(f"Invalid migration plan {config.get('id', '<unnamed>')}: {exc}") from exc

    for key in ("id", "title"):
        if not config.get(key):
            raise PlanValidationError(f"Migration plan config is missing '{key}'")

    builder = MigrationPlanBuilder(
        id=config["id"],
        title=config["title"],
        description=config.get("description", ""),
        version=config.get("version", "1.0.0"),
        dry_run_only=config.get("dry_run_only", config.get("dryRunOnly", False)),
    )
    for card in config["cards"]:
        if not card.get("name") or not card.get("issuer"):
            raise PlanValidationError(f"Every card in plan {config['id']} needs a name and an issuer")
        card_builder = builder.add_card_update(card["name"], card["issuer"])
        annual_fee = card.get("annual_fee", card.get("annualFee"))
        if annual_fee is not None:
            card_builder.set_annual_fee(annual_fee)
        effective_date = card.get("effective_date", card.get("effectiveDate"))
        if effective_date:
            card_builder.set_effective_date(effective_date)
        notes = card.get("migration_notes", card.get("migrationNotes"))
        if notes:
            card_builder.set_migration_notes(notes)
        for benefit in card.get("benefits", []):
            card_builder.add_benefit(benefit)

    return builder.build()
