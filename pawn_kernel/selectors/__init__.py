"""Selectors for the pawn kernel (read side)."""

from pawn_kernel.selectors.ledger_selector import (
    AccountBalance,
    EntryDTO,
    EntryLineDTO,
    LedgerSelector,
    TrialBalanceRow,
)

__all__ = [
    "AccountBalance",
    "EntryDTO",
    "EntryLineDTO",
    "LedgerSelector",
    "TrialBalanceRow",
]
