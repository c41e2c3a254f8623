"""Load migration plans from YAML or JSON files."""
import json
import logging
from pathlib import Path

import yaml

from perkcycle.errors import PlanValidationError
from perkcycle.schemas.plan import MigrationPlan
from perkcycle.services.plan_builder import plan_from_config

logger = logging.getLogger(__name__)

PLAN_SUFFIXES = (".yaml", ".yml", ".json")


def load_plan(path: Path | str) -> MigrationPlan:
    """Load and validate a single plan document."""
    path = Path(path)
    if not path.exists():
        raise PlanValidationError(f"Plan file not found: {path}")

    with open(path, "r") as f:
        try:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise PlanValidationError(f"Could not parse plan file {path}: {e}") from e

    if not isinstance(data, dict):
        raise PlanValidationError(f"Plan file {path} must contain a mapping at the top level")

    plan = plan_from_config(data)
    logger.debug(f"Loaded plan {plan.id} ({plan.benefit_count} benefits) from {path}")
    return plan


def list_plans(plans_dir: Path) -> list[MigrationPlan]:
    """Load every readable plan in ``plans_dir``; broken files are logged and skipped."""
    if not plans_dir.exists():
        logger.warning(f"Plans directory not found: {plans_dir}")
        return []

    plans = []
    for plan_file in sorted(plans_dir.iterdir()):
        if plan_file.suffix not in PLAN_SUFFIXES:
            continue
        try:
            plans.append(load_plan(plan_file))
        except PlanValidationError as e:
            logger.error(f"Failed to load plan from {plan_file}: {e}")

    logger.info(f"Loaded {len(plans)} migration plans")
    return plans


def find_plan(plans_dir: Path, plan_id: str) -> MigrationPlan:
    """Get a plan by its id."""
    for plan in list_plans(plans_dir):
        if plan.id == plan_id:
            return plan
    raise PlanValidationError(f"No plan with id '{plan_id}' in {plans_dir}")
