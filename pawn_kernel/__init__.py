"""
Pawn Kernel - ledger core for the pawnshop engine

Money-correct building blocks shared by the loan and cash modules:
- Fixed-precision money arithmetic
- Double-entry accounting entries, posted immutably
- Locked-counter sequence numbering
- Typed error taxonomy with machine-readable kinds
- Structured JSON logging
"""

__version__ = "0.1.0"
