"""
Database models package.
"""

from tally.models.dashboard import Dashboard, DashboardMember, DashboardRole, MemberStatus
from tally.models.account import Account, AccountType
from tally.models.recurrence import RecurrenceDefinition, RecurrenceOccurrence, Frequency, EntryType
from tally.models.transaction import Transaction, InstallmentStatus

__all__ = [
    "Dashboard",
    "DashboardMember",
    "DashboardRole",
    "MemberStatus",
    "Account",
    "AccountType",
    "RecurrenceDefinition",
    "RecurrenceOccurrence",
    "Frequency",
    "EntryType",
    "Transaction",
    "InstallmentStatus",
]
