"""User model."""
import uuid

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import relationship

from perkcycle.database import Base
from perkcycle.models.card import utcnow_iso


class User(Base):
    """Account holder."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(100))
    settings = Column(Text, default="{}")  # JSON for notification prefs
    created_at = Column(String(24), default=utcnow_iso)

    # Relationships
    account_cards = relationship("AccountCard", back_populates="user", cascade="all, delete-orphan")
