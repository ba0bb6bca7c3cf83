"""Pydantic schemas for recurrence definitions and processor runs."""

from pydantic import BaseModel
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal

from tally.models.recurrence import EntryType, Frequency


class RecurrenceBase(BaseModel):
    description: str
    amount: Decimal
    entry_type: EntryType
    category: str
    subcategory: Optional[str] = None
    notes: Optional[str] = None
    account_id: Optional[str] = None
    frequency: Frequency
    interval: int = 1
    start_date: date
    end_date: Optional[date] = None
    installment_count: Optional[int] = None


class RecurrenceCreate(RecurrenceBase):
    pass


class RecurrenceUpdate(BaseModel):
    # Template fields
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    entry_type: Optional[EntryType] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    notes: Optional[str] = None
    account_id: Optional[str] = None
    # Schedule fields, applied from the next occurrence onwards
    frequency: Optional[Frequency] = None
    interval: Optional[int] = None
    end_date: Optional[date] = None
    installment_count: Optional[int] = None
    is_active: Optional[bool] = None


class RecurrenceResponse(RecurrenceBase):
    id: str
    dashboard_id: str
    user_id: str
    next_due_date: date
    occurrence_index: int
    last_generated_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    # Computed fields added by API
    generated_count: Optional[int] = None

    class Config:
        from_attributes = True


class RecurrencePreview(BaseModel):
    """Upcoming occurrence dates, nothing written."""
    recurrence_id: str
    dates: List[date]


class ProcessOutcomeResponse(BaseModel):
    recurrence_id: str
    status: str
    created: int
    error: Optional[str] = None


class ProcessResponse(BaseModel):
    """Summary of one processor run."""
    as_of: date
    created_count: int
    advanced_count: int
    cancelled: bool
    outcomes: List[ProcessOutcomeResponse]
    created_ids: List[str] = []
