"""
Pydantic schemas package.
"""

from tally.schemas.recurrence import (
    RecurrenceBase,
    RecurrenceCreate,
    RecurrenceUpdate,
    RecurrenceResponse,
    RecurrencePreview,
    ProcessOutcomeResponse,
    ProcessResponse,
)
from tally.schemas.transaction import (
    TransactionResponse,
    TransactionListResponse,
    BulkDeleteResponse,
)
from tally.schemas.installment import (
    InstallmentScope,
    InstallmentPlanCreate,
    InstallmentGroupPatch,
    InstallmentGroupResponse,
    ScopedDeleteResponse,
)

__all__ = [
    "RecurrenceBase",
    "RecurrenceCreate",
    "RecurrenceUpdate",
    "RecurrenceResponse",
    "RecurrencePreview",
    "ProcessOutcomeResponse",
    "ProcessResponse",
    "TransactionResponse",
    "TransactionListResponse",
    "BulkDeleteResponse",
    "InstallmentScope",
    "InstallmentPlanCreate",
    "InstallmentGroupPatch",
    "InstallmentGroupResponse",
    "ScopedDeleteResponse",
]
