"""Error taxonomy for cycle calculation, migration and materialization."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Category recorded on every issue reported by an engine run."""

    VALIDATION = "validation"
    CYCLE_CALCULATION = "cycle_calculation"
    DATABASE = "database"
    USER_DATA = "user_data"


class PerkcycleError(Exception):
    """Base class for all domain errors."""

    error_type = ErrorType.DATABASE


class PlanValidationError(PerkcycleError):
    """A plan is malformed or failed its pre-flight cycle checks."""

    error_type = ErrorType.VALIDATION


class CycleCalculationError(PerkcycleError):
    """The cycle calculator rejected its inputs."""

    error_type = ErrorType.CYCLE_CALCULATION


class UnsupportedFrequencyError(CycleCalculationError):
    """Raised when a non-recurring frequency reaches the recurring calculator."""


class InvalidCycleError(CycleCalculationError):
    """Raised when a computed window is empty, inverted or out of range."""


class DatabaseError(PerkcycleError):
    """A Store operation failed."""

    error_type = ErrorType.DATABASE


class TransactionTimeoutError(DatabaseError):
    """An account transaction ran past the configured ceiling."""


class UserDataError(PerkcycleError):
    """An account-level step failed after pre-flight passed."""

    error_type = ErrorType.USER_DATA

    def __init__(
        self,
        message: str,
        account_id: str | None = None,
        user_id: str | None = None,
        user_email: str | None = None,
    ):
        super().__init__(message)
        self.account_id = account_id
        self.user_id = user_id
        self.user_email = user_email


@dataclass
class Issue:
    """One error recorded during a run, with enough identity to retry by hand."""

    type: ErrorType
    message: str
    account_id: str | None = None
    user_id: str | None = None
    user_email: str | None = None
    benefit_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "account_id": self.account_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "benefit_id": self.benefit_id,
            "details": self.details,
        }
