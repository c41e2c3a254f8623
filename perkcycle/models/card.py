"""Card product templates and account-held cards."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from perkcycle.database import Base


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class BenefitTermsMixin:
    """Columns describing a recurring benefit (shared by templates and bound benefits)."""

    category = Column(String(100), nullable=False)
    description = Column(String(255), nullable=False)
    percentage = Column(Float, nullable=False, default=0.0)
    max_amount = Column(Float)  # Monetary cap per occurrence
    frequency = Column(String(20), nullable=False)  # MONTHLY, QUARTERLY, YEARLY, ONE_TIME
    cycle_alignment = Column(String(20))  # CARD_ANNIVERSARY, CALENDAR_FIXED
    fixed_cycle_start_month = Column(Integer)  # 1-12
    fixed_cycle_duration_months = Column(Integer)
    occurrences_in_cycle = Column(Integer, nullable=False, default=1)
    position = Column(Integer, nullable=False, default=0)


class CardProduct(Base):
    """Canonical benefit template for a card product (applies to newly provisioned accounts)."""

    __tablename__ = "card_products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), unique=True, nullable=False, index=True)
    issuer = Column(String(50), nullable=False)
    annual_fee = Column(Integer, default=0)
    created_at = Column(String(24), default=utcnow_iso)
    updated_at = Column(String(24), default=utcnow_iso, onupdate=utcnow_iso)

    # Relationships
    benefits = relationship(
        "CardProductBenefit",
        back_populates="card_product",
        cascade="all, delete-orphan",
        order_by="CardProductBenefit.position",
    )


class CardProductBenefit(BenefitTermsMixin, Base):
    """One benefit in a card product's template."""

    __tablename__ = "card_product_benefits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    card_product_id = Column(String(36), ForeignKey("card_products.id", ondelete="CASCADE"), nullable=False, index=True)

    card_product = relationship("CardProduct", back_populates="benefits")


class AccountCard(Base):
    """One account's ownership of a card product."""

    __tablename__ = "account_cards"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False, index=True)  # Card product name
    opened_date = Column(String(10))  # YYYY-MM-DD, anchors anniversary benefits
    created_at = Column(String(24), default=utcnow_iso)
    updated_at = Column(String(24), default=utcnow_iso, onupdate=utcnow_iso)

    # Relationships
    user = relationship("User", back_populates="account_cards")
    benefits = relationship(
        "Benefit",
        back_populates="account_card",
        cascade="all, delete-orphan",
        order_by="Benefit.position",
    )
