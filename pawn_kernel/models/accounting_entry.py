"""
Module: pawn_kernel.models.accounting_entry
Responsibility: ORM persistence for double-entry accounting entries and their
    lines.  An entry is the atomic unit of the general ledger: one header
    owning two or more debit/credit lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    models/account.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - sum(debit lines) == sum(credit lines) == total_debit == total_credit
      (checked by AccountingPoster before the header is written).
    - Every line amount is strictly positive (CHECK constraint).
    - Once is_posted is true the entry and its lines are immutable
      (db/immutability.py).  Corrections are new reversing entries.
    - An entry can be reversed at most once (unique reversal_of_id).

Failure modes:
    - IntegrityError on duplicate entry_number or a second reversal of the
      same entry (translated to ConstraintViolationError by transaction()).
    - ImmutabilityViolationError on any attempt to modify a posted entry.

Audit relevance:
    Posted entries are the financial record of every disbursement, payment,
    refund, confiscation and renewal.  reference_type/reference_id tie each
    entry back to the loan, payment, or session that produced it.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pawn_kernel.db.base import TrackedBase, UUIDString
from pawn_kernel.models.account import Account


class EntryType(str, Enum):
    """Which side of the entry a line is on.  Amount is always positive."""

    DEBIT = "debit"
    CREDIT = "credit"


class ReferenceType(str, Enum):
    """Business document an entry (or cash movement) refers to."""

    LOAN = "loan"
    PAYMENT = "payment"
    PAYMENT_REVERSAL = "payment_reversal"
    LOAN_CANCELLATION = "loan_cancellation"
    CONFISCATION = "confiscation"
    RENEWAL = "renewal"
    SALE = "sale"
    ENTRY_REVERSAL = "entry_reversal"
    MANUAL = "manual"


class AccountingEntry(TrackedBase):
    """
    Accounting entry header.

    Contract:
        Written once, already posted.  There is no draft workflow: the
        poster validates and inserts header and lines in the caller's
        transaction with ``is_posted=True``.
    """

    __tablename__ = "accounting_entries"

    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_accounting_entry_number"),
        UniqueConstraint("reversal_of_id", name="uq_accounting_entry_reversal_of"),
        Index("idx_accounting_entry_date", "entry_date"),
        Index("idx_accounting_entry_reference", "reference_type", "reference_id"),
        Index("idx_accounting_entry_branch", "branch_id"),
    )

    entry_number: Mapped[str] = mapped_column(String(30), nullable=False)

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    entry_date: Mapped[date] = mapped_column(nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    reference_type: Mapped[ReferenceType | None] = mapped_column(
        String(30), nullable=True
    )

    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    total_debit: Mapped[Decimal] = mapped_column(nullable=False)

    total_credit: Mapped[Decimal] = mapped_column(nullable=False)

    is_posted: Mapped[bool] = mapped_column(default=False, nullable=False)

    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # If this entry reverses another, points to the original
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounting_entries.id"),
        nullable=True,
    )

    lines: Mapped[list["AccountingEntryLine"]] = relationship(
        back_populates="entry",
        order_by="AccountingEntryLine.line_seq",
        lazy="selectin",
    )

    @property
    def is_balanced(self) -> bool:
        debits = sum(
            (l.amount for l in self.lines if l.entry_type == EntryType.DEBIT),
            Decimal("0"),
        )
        credits = sum(
            (l.amount for l in self.lines if l.entry_type == EntryType.CREDIT),
            Decimal("0"),
        )
        return debits == credits == self.total_debit == self.total_credit

    def __repr__(self) -> str:
        return f"<AccountingEntry {self.entry_number} posted={self.is_posted}>"


class AccountingEntryLine(TrackedBase):
    """A single debit or credit against one account."""

    __tablename__ = "accounting_entry_lines"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_accounting_line_amount_positive"),
        Index("idx_accounting_line_entry", "entry_id"),
        Index("idx_accounting_line_account", "account_id"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounting_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    entry_type: Mapped[EntryType] = mapped_column(String(10), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    entry: Mapped[AccountingEntry] = relationship(back_populates="lines")

    account: Mapped[Account] = relationship()
