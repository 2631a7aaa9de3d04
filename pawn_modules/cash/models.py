"""
pawn_modules.cash.models
========================

Responsibility:
    Frozen dataclass value objects for cash sessions and their movement
    journal.  No business logic; structure only.

Invariants enforced:
    - All monetary fields use ``Decimal`` -- never ``float``.
    - All DTOs are frozen.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CashSessionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class MovementType(str, Enum):
    """Income adds to the session balance, expense subtracts."""

    INCOME = "income"
    EXPENSE = "expense"


class MovementReference(str, Enum):
    """Business document a movement was recorded for."""

    LOAN = "loan"
    PAYMENT = "payment"
    PAYMENT_REVERSAL = "payment_reversal"
    LOAN_CANCELLATION = "loan_cancellation"
    SALE = "sale"
    MANUAL = "manual"


@dataclass(frozen=True)
class CashSession:
    """
    Read model of a cash session.

    ``closing_amount``, ``expected_amount`` and ``difference`` are None
    until the session is closed.
    """

    id: UUID
    branch_id: UUID
    cash_register_id: UUID
    user_id: UUID
    opening_amount: Decimal
    closing_amount: Decimal | None
    expected_amount: Decimal | None
    difference: Decimal | None
    status: CashSessionStatus
    opened_at: datetime
    closed_at: datetime | None
    opening_notes: str | None
    closing_notes: str | None
    closed_by_id: UUID | None

    @property
    def is_open(self) -> bool:
        return self.status == CashSessionStatus.OPEN


@dataclass(frozen=True)
class CashMovement:
    id: UUID
    branch_id: UUID
    session_id: UUID
    movement_seq: int
    movement_type: MovementType
    amount: Decimal
    payment_method: str
    reference_type: MovementReference | None
    reference_id: UUID | None
    description: str
    balance_after: Decimal


@dataclass(frozen=True)
class SessionSummary:
    """Totals of a session's movement journal."""

    session: CashSession
    total_income: Decimal
    total_expense: Decimal
    cash_income: Decimal
    cash_expense: Decimal
    by_method: dict[str, Decimal]
    movement_count: int
    current_balance: Decimal

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expense

    @property
    def expected_amount(self) -> Decimal:
        """Opening amount plus the net of every movement."""
        return self.session.opening_amount + self.net
