"""SQLAlchemy models package."""
from perkcycle.models.user import User
from perkcycle.models.card import AccountCard, CardProduct, CardProductBenefit
from perkcycle.models.benefit import Benefit, BenefitStatus

__all__ = [
    "User",
    "CardProduct",
    "CardProductBenefit",
    "AccountCard",
    "Benefit",
    "BenefitStatus",
]
