"""
NumberingService -- human-readable document numbers.

Responsibility:
    Formats sequence values into the document numbers used across the
    pawnshop: loans, payments, sales and accounting entries.  Numbers are
    opaque strings to every other component.

Architecture position:
    Kernel > Services.  Wraps SequenceService; flush-only.

Formats:
    Loan              LN-YYYY-NNNNNN      one sequence per year
    Payment           PY-YYYY-NNNNNN      one sequence per year
    Sale              SL-YYYY-NNNNNN      one sequence per year
    Accounting entry  JE-YYYYMMDD-NNNN    one sequence per day
"""

from datetime import date

from sqlalchemy.orm import Session

from pawn_kernel.services.sequence_service import SequenceService


class NumberingService:
    """
    Allocates formatted document numbers inside the caller's transaction.

    Guarantees:
        - Numbers are unique per format because the underlying counters are
          locked rows, never MAX()+1 over the document table.
        - A rolled-back transaction does not consume its number.
    """

    LOAN_PREFIX = "LN"
    PAYMENT_PREFIX = "PY"
    SALE_PREFIX = "SL"
    ENTRY_PREFIX = "JE"

    def __init__(self, session: Session, sequences: SequenceService | None = None):
        self._sequences = sequences or SequenceService(session)

    def _yearly(self, prefix: str, on: date) -> str:
        value = self._sequences.next_value(f"{prefix.lower()}:{on.year:04d}")
        return f"{prefix}-{on.year:04d}-{value:06d}"

    def next_loan_number(self, on: date) -> str:
        return self._yearly(self.LOAN_PREFIX, on)

    def next_payment_number(self, on: date) -> str:
        return self._yearly(self.PAYMENT_PREFIX, on)

    def next_sale_number(self, on: date) -> str:
        return self._yearly(self.SALE_PREFIX, on)

    def next_entry_number(self, on: date) -> str:
        stamp = on.strftime("%Y%m%d")
        value = self._sequences.next_value(f"{self.ENTRY_PREFIX.lower()}:{stamp}")
        return f"{self.ENTRY_PREFIX}-{stamp}-{value:04d}"
