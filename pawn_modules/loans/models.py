"""
pawn_modules.loans.models
=========================

Responsibility:
    Frozen dataclass value objects and enumerations for the loan ledger:
    loan and payment read models, requests, balance snapshots, allocation
    results and overdue assessments.  No business logic; structure only.

Architecture:
    Module layer (pawn_modules).  These are in-memory DTOs, NOT SQLAlchemy
    ORM models (see ``orm.py``).  Optional values are ``X | None`` so that
    "absent" and "zero" never collapse into one another.

Invariants enforced:
    - All monetary fields use ``Decimal`` -- never ``float``.
    - All DTOs are frozen.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pawn_kernel.db.types import ZERO


class LoanStatus(str, Enum):
    """Loan lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    OVERDUE = "overdue"
    PAID = "paid"
    RENEWED = "renewed"
    CONFISCATED = "confiscated"
    CANCELLED = "cancelled"


# Statuses in which the loan accepts payments and accrues late fees
OPEN_LOAN_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.OVERDUE})

# Statuses from which nothing about the loan may change again
TERMINAL_LOAN_STATUSES = frozenset({
    LoanStatus.RENEWED,
    LoanStatus.CONFISCATED,
    LoanStatus.CANCELLED,
})


class PaymentPlanType(str, Enum):
    SINGLE = "single"
    MINIMUM_PAYMENT = "minimum_payment"
    INSTALLMENTS = "installments"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    CHECK = "check"
    OTHER = "other"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    REVERSED = "reversed"


# ---------------------------------------------------------------------------
# Balance arithmetic
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoanBalances:
    """The three remaining buckets of a loan."""

    principal_remaining: Decimal
    interest_remaining: Decimal
    late_fee_remaining: Decimal

    @property
    def payoff(self) -> Decimal:
        """Amount that fully settles the loan."""
        return self.principal_remaining + self.interest_remaining + self.late_fee_remaining

    @property
    def is_settled(self) -> bool:
        return (
            self.principal_remaining == ZERO
            and self.interest_remaining == ZERO
            and self.late_fee_remaining == ZERO
        )


@dataclass(frozen=True)
class AllocationResult:
    """How one payment amount splits across the buckets."""

    late_fee: Decimal
    interest: Decimal
    principal: Decimal
    fully_paid: bool

    @property
    def total(self) -> Decimal:
        return self.late_fee + self.interest + self.principal


@dataclass(frozen=True)
class OverdueAssessment:
    """Result of re-deriving a loan's overdue state at a point in time."""

    status: LoanStatus
    days_overdue: int
    late_fee_amount: Decimal
    late_fee_remaining: Decimal


@dataclass(frozen=True)
class ScheduledInstallment:
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateLoanInput:
    """
    Request to disburse a new loan against one pledged item.

    ``max_loan_value`` is the item's appraised lending limit when the
    caller knows it.  ``cash_session_id`` records the disbursement as an
    expense in that session; a cash disbursement requires one.  Any other
    ``disbursement_method`` is settled through the bank account.
    """

    branch_id: UUID
    customer_id: UUID
    item_id: UUID
    loan_amount: Decimal
    interest_rate: Decimal
    actor_id: UUID
    loan_term_days: int = 30
    late_fee_rate: Decimal = ZERO
    payment_plan_type: PaymentPlanType = PaymentPlanType.SINGLE
    number_of_installments: int | None = None
    requires_minimum_payment: bool = False
    minimum_payment_amount: Decimal | None = None
    grace_period_days: int | None = None
    category_code: str | None = None
    max_loan_value: Decimal | None = None
    notes: str | None = None
    cash_session_id: UUID | None = None
    disbursement_method: PaymentMethod = PaymentMethod.CASH


@dataclass(frozen=True)
class RenewLoanInput:
    """
    Request to roll a loan into a new one.

    With ``pay_interest`` the outstanding interest and late fee are
    collected as a companion payment; otherwise they are added to the new
    principal.  ``new_interest_rate`` of None keeps the current rate.
    """

    loan_id: UUID
    new_term_days: int
    pay_interest: bool
    actor_id: UUID
    new_interest_rate: Decimal | None = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    cash_session_id: UUID | None = None


@dataclass(frozen=True)
class MakePaymentInput:
    loan_id: UUID
    amount: Decimal
    actor_id: UUID
    payment_method: PaymentMethod = PaymentMethod.CASH
    cash_session_id: UUID | None = None
    reference_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ReversePaymentInput:
    payment_id: UUID
    reason: str
    actor_id: UUID


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoanQuote:
    """Terms a loan request would produce, without persisting anything."""

    loan_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    start_date: date
    due_date: date
    loan_term_days: int
    installments: tuple[ScheduledInstallment, ...] = ()

    @property
    def installment_amount(self) -> Decimal | None:
        if not self.installments:
            return None
        return self.installments[0].total_amount


@dataclass(frozen=True)
class Installment:
    id: UUID
    loan_id: UUID
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    is_paid: bool
    paid_date: date | None


@dataclass(frozen=True)
class Loan:
    """Read model of a loan row."""

    id: UUID
    loan_number: str
    branch_id: UUID
    customer_id: UUID
    item_id: UUID
    category_code: str | None
    loan_amount: Decimal
    interest_rate: Decimal
    interest_amount: Decimal
    total_amount: Decimal
    principal_remaining: Decimal
    interest_remaining: Decimal
    late_fee_rate: Decimal
    late_fee_amount: Decimal
    late_fee_remaining: Decimal
    amount_paid: Decimal
    start_date: date
    due_date: date
    paid_date: date | None
    confiscated_date: date | None
    cancelled_date: date | None
    payment_plan_type: PaymentPlanType
    loan_term_days: int
    requires_minimum_payment: bool
    minimum_payment_amount: Decimal | None
    grace_period_days: int
    number_of_installments: int | None
    status: LoanStatus
    days_overdue: int
    renewal_count: int
    renewed_from_id: UUID | None
    notes: str | None

    @property
    def balances(self) -> LoanBalances:
        return LoanBalances(
            principal_remaining=self.principal_remaining,
            interest_remaining=self.interest_remaining,
            late_fee_remaining=self.late_fee_remaining,
        )

    @property
    def payoff_amount(self) -> Decimal:
        return self.balances.payoff


@dataclass(frozen=True)
class Payment:
    """Read model of a payment row."""

    id: UUID
    payment_number: str
    branch_id: UUID
    loan_id: UUID
    customer_id: UUID
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    late_fee_amount: Decimal
    payment_method: PaymentMethod
    reference_number: str | None
    status: PaymentStatus
    payment_date: datetime
    loan_balance_after: Decimal
    interest_balance_after: Decimal
    late_fee_balance_after: Decimal
    cash_session_id: UUID | None
    accounting_entry_id: UUID | None
    reversed_at: datetime | None
    reversed_by_id: UUID | None
    reversal_reason: str | None
    reversal_entry_id: UUID | None
    notes: str | None


@dataclass(frozen=True)
class RenewalResult:
    """Both sides of a renewal plus the companion payment, if one was taken."""

    previous_loan: Loan
    new_loan: Loan
    interest_payment: Payment | None
    capitalised_amount: Decimal
