"""
Account database model.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
import enum
from tally.database import Base


class AccountType(str, enum.Enum):
    """Account type enumeration."""
    credit = "credit"
    debit = "debit"
    bank = "bank"
    cash = "cash"
    other = "other"


class Account(Base):
    """Account model, scoped to a dashboard."""

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dashboard_id = Column(String(36), ForeignKey("dashboards.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    account_type = Column(Enum(AccountType), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    transactions = relationship("Transaction", back_populates="account")
    recurrences = relationship("RecurrenceDefinition", back_populates="account")
