"""
Module: pawn_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every accounting entry line.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Account.code is globally unique.
    - Only active accounts may be posted to (checked by AccountingPoster).

Failure modes:
    - AccountNotFoundError when a posting references a non-existent account.
    - InactiveAccountError when a posting targets an inactive account.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pawn_kernel.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"


class AccountRole(str, Enum):
    """Posting roles, resolved to account codes by configuration."""

    CASH = "cash"
    LOANS_RECEIVABLE = "loans_receivable"
    COLLATERAL_INVENTORY = "collateral_inventory"
    INTEREST_INCOME = "interest_income"
    LATE_FEE_INCOME = "late_fee_income"
    BANK = "bank"


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Contract:
        ``code`` is the stable business key used by configuration role
        mappings (e.g. ``loans_receivable -> 1201``).  ``parent_id`` allows a
        simple hierarchy for reporting; postings always target leaves.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    # System accounts are seeded from configuration and referenced by role
    is_system: Mapped[bool] = mapped_column(default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"
