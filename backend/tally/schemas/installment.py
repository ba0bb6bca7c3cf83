"""Pydantic schemas for installment plans and group edits."""

import enum
from pydantic import BaseModel
from typing import Optional, List
import datetime
from decimal import Decimal

from tally.models.recurrence import EntryType, Frequency
from tally.models.transaction import InstallmentStatus
from tally.schemas.transaction import TransactionResponse


class InstallmentScope(str, enum.Enum):
    """Breadth of a group edit or delete."""
    single = "single"
    remaining = "remaining"
    all = "all"


class InstallmentPlanCreate(BaseModel):
    """A purchase to split into dated installments."""
    description: str
    total_amount: Decimal
    count: int
    first_due_date: datetime.date
    frequency: Frequency = Frequency.MONTHLY
    interval: int = 1
    entry_type: EntryType = EntryType.expense
    category: str
    subcategory: Optional[str] = None
    notes: Optional[str] = None
    account_id: Optional[str] = None


class InstallmentGroupPatch(BaseModel):
    """
    Fields editable across a group.

    amount, total_amount and date are interpreted per scope; everything else
    is copied onto each row in scope.
    """
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    notes: Optional[str] = None
    entry_type: Optional[EntryType] = None
    account_id: Optional[str] = None
    installment_status: Optional[InstallmentStatus] = None
    amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None  # scope=all only
    date: Optional[datetime.date] = None


class InstallmentGroupResponse(BaseModel):
    group_id: str
    installment_total: int
    total_amount: Decimal
    items: List[TransactionResponse]


class ScopedDeleteResponse(BaseModel):
    deleted_count: int
