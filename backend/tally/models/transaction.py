"""
Transaction database model.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Date, Numeric, Integer, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import relationship
import enum
from tally.database import Base
from tally.models.recurrence import EntryType, Frequency


class InstallmentStatus(str, enum.Enum):
    """Payment status of an installment row."""
    not_applicable = "n/a"
    pending = "pending"
    paid = "paid"


class Transaction(Base):
    """Transaction model. Installment rows share a group_id."""

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dashboard_id = Column(String(36), ForeignKey("dashboards.id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # Always positive, direction in entry_type
    entry_type = Column(Enum(EntryType), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(100), nullable=False)
    subcategory = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    # Installment linkage
    group_id = Column(String(36), nullable=True, index=True)
    installment_number = Column(Integer, nullable=True)
    installment_total = Column(Integer, nullable=True)
    installment_frequency = Column(Enum(Frequency), nullable=True)
    installment_interval = Column(Integer, nullable=True)
    installment_status = Column(Enum(InstallmentStatus), default=InstallmentStatus.not_applicable, nullable=False)

    # Recurrence back-reference
    recurrence_id = Column(String(36), ForeignKey("recurrences.id"), nullable=True)
    occurrence_date = Column(Date, nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    account = relationship("Account", back_populates="transactions")
    recurrence = relationship("RecurrenceDefinition", back_populates="transactions")

    # Indexes for common queries
    __table_args__ = (
        Index("idx_transaction_dashboard_date", "dashboard_id", "date"),
        Index("idx_transaction_recurrence", "recurrence_id", "occurrence_date"),
    )
