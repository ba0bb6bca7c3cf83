"""
Recurrence definition and occurrence ledger database models.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Boolean, DateTime, Date, Numeric, Integer, Text, Enum, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
import enum
from tally.database import Base


class Frequency(str, enum.Enum):
    """Recurrence frequency enumeration."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    BIMONTHLY = "BIMONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUALLY = "SEMIANNUALLY"
    YEARLY = "YEARLY"


class EntryType(str, enum.Enum):
    """Direction of money flow."""
    income = "income"
    expense = "expense"


class RecurrenceDefinition(Base):
    """Template plus schedule that produces transactions over time."""

    __tablename__ = "recurrences"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dashboard_id = Column(String(36), ForeignKey("dashboards.id"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)

    # Template
    description = Column(Text, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    entry_type = Column(Enum(EntryType), nullable=False)
    category = Column(String(100), nullable=False)
    subcategory = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)

    # Schedule
    frequency = Column(Enum(Frequency), nullable=False)
    interval = Column(Integer, default=1, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    installment_count = Column(Integer, nullable=True)  # Split every occurrence when >= 2

    # Cursor: next_due_date == occurrence(anchor_date, occurrence_index)
    anchor_date = Column(Date, nullable=False)
    occurrence_index = Column(Integer, default=0, nullable=False)
    next_due_date = Column(Date, nullable=False)
    last_generated_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    account = relationship("Account", back_populates="recurrences")
    transactions = relationship("Transaction", back_populates="recurrence")
    occurrences = relationship("RecurrenceOccurrence", back_populates="recurrence")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_recurrence_due", "is_active", "next_due_date"),
    )


class RecurrenceOccurrence(Base):
    """Ledger of generated occurrences; at most one row per (recurrence, date)."""

    __tablename__ = "recurrence_occurrences"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recurrence_id = Column(String(36), ForeignKey("recurrences.id"), nullable=False)
    occurrence_date = Column(Date, nullable=False)
    transaction_count = Column(Integer, default=1, nullable=False)
    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    recurrence = relationship("RecurrenceDefinition", back_populates="occurrences")

    __table_args__ = (
        UniqueConstraint("recurrence_id", "occurrence_date", name="uq_recurrence_occurrence"),
    )
