"""Bound benefits and their per-cycle status rows."""
import uuid

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from perkcycle.database import Base
from perkcycle.models.card import BenefitTermsMixin, utcnow_iso


class Benefit(BenefitTermsMixin, Base):
    """A benefit definition bound to one account card."""

    __tablename__ = "benefits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_card_id = Column(String(36), ForeignKey("account_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(String(24))  # ISO instant the benefit became effective
    end_date = Column(String(24))
    created_at = Column(String(24), default=utcnow_iso)

    # Relationships
    account_card = relationship("AccountCard", back_populates="benefits")
    statuses = relationship(
        "BenefitStatus",
        back_populates="benefit",
        cascade="all, delete-orphan",
        order_by="BenefitStatus.cycle_start_date",
    )


class BenefitStatus(Base):
    """One claimable occurrence of a benefit within one cycle."""

    __tablename__ = "benefit_statuses"
    __table_args__ = (
        UniqueConstraint("benefit_id", "user_id", "cycle_start_date", "occurrence_index", name="uq_benefit_status_cycle"),
        Index("ix_benefit_statuses_user_end", "user_id", "cycle_end_date"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    benefit_id = Column(String(36), ForeignKey("benefits.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Cycle boundaries, ISO-8601 UTC with millisecond precision
    cycle_start_date = Column(String(24), nullable=False)
    cycle_end_date = Column(String(24), nullable=False)
    occurrence_index = Column(Integer, nullable=False, default=0)

    # Account-holder owned state
    is_completed = Column(Integer, default=0)  # SQLite boolean
    completed_at = Column(String(24))
    is_not_usable = Column(Integer, default=0)  # SQLite boolean
    used_amount = Column(Float, default=0.0)

    # Timestamps
    created_at = Column(String(24), default=utcnow_iso)
    updated_at = Column(String(24), default=utcnow_iso, onupdate=utcnow_iso)

    # Relationships
    benefit = relationship("Benefit", back_populates="statuses")
