"""
Transaction schemas.
"""

from pydantic import BaseModel
from typing import Optional
from datetime import date, datetime
from decimal import Decimal

from tally.models.recurrence import EntryType, Frequency
from tally.models.transaction import InstallmentStatus


class TransactionResponse(BaseModel):
    id: str
    dashboard_id: str
    user_id: str
    account_id: Optional[str]
    date: date
    amount: Decimal
    entry_type: EntryType
    description: str
    category: str
    subcategory: Optional[str]
    notes: Optional[str]
    group_id: Optional[str]
    installment_number: Optional[int]
    installment_total: Optional[int]
    installment_frequency: Optional[Frequency]
    installment_interval: Optional[int]
    installment_status: InstallmentStatus
    recurrence_id: Optional[str]
    occurrence_date: Optional[date]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    page: int
    pages: int


class BulkDeleteResponse(BaseModel):
    deleted_count: int
