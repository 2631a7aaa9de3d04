"""Kernel ORM models: chart of accounts and accounting entries."""

from pawn_kernel.models.account import Account, AccountRole, AccountType
from pawn_kernel.models.accounting_entry import (
    AccountingEntry,
    AccountingEntryLine,
    EntryType,
    ReferenceType,
)

__all__ = [
    "Account",
    "AccountRole",
    "AccountType",
    "AccountingEntry",
    "AccountingEntryLine",
    "EntryType",
    "ReferenceType",
]
