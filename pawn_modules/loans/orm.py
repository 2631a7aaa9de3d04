"""
Loan Ledger ORM Models (``pawn_modules.loans.orm``).

Responsibility
--------------
SQLAlchemy persistence for loans, their installment schedules and the
payments applied to them.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``pawn_kernel.db.base`` and
sibling ``models.py``.  MUST NOT be imported by ``pawn_kernel`` at import
time.

Invariants enforced
-------------------
- Loans carry a ``version`` counter (``version_id_col``); a concurrent
  UPDATE of the same row raises ``StaleDataError``.
- CHECK constraints keep every remaining bucket non-negative and the payment
  split equal to its amount.
- Payments and terminal loans are guarded by ``pawn_kernel.db.immutability``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pawn_kernel.db.base import TrackedBase, UUIDString
from pawn_modules.loans.models import (
    Installment,
    Loan,
    LoanBalances,
    LoanStatus,
    Payment,
    PaymentMethod,
    PaymentPlanType,
    PaymentStatus,
)


# ---------------------------------------------------------------------------
# LoanModel
# ---------------------------------------------------------------------------


class LoanModel(TrackedBase):
    """
    ORM model for ``Loan``.

    Table: ``loans``
    """

    __tablename__ = "loans"

    __table_args__ = (
        UniqueConstraint("loan_number", name="uq_loans_loan_number"),
        CheckConstraint("loan_amount > 0", name="ck_loans_amount_positive"),
        CheckConstraint("principal_remaining >= 0", name="ck_loans_principal_non_negative"),
        CheckConstraint("interest_remaining >= 0", name="ck_loans_interest_non_negative"),
        CheckConstraint("late_fee_remaining >= 0", name="ck_loans_late_fee_non_negative"),
        Index("idx_loans_status_due", "status", "due_date"),
        Index("idx_loans_customer", "customer_id"),
        Index("idx_loans_branch", "branch_id"),
        Index("idx_loans_renewed_from", "renewed_from_id"),
    )

    loan_number: Mapped[str] = mapped_column(String(30), nullable=False)
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    item_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    category_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    loan_amount: Mapped[Decimal] = mapped_column(nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    principal_remaining: Mapped[Decimal] = mapped_column(nullable=False)
    interest_remaining: Mapped[Decimal] = mapped_column(nullable=False)

    late_fee_rate: Mapped[Decimal] = mapped_column(Numeric(9, 4), nullable=False)
    # Accrued late fee, re-derived from days_overdue on every assessment
    late_fee_amount: Mapped[Decimal] = mapped_column(nullable=False)
    late_fee_remaining: Mapped[Decimal] = mapped_column(nullable=False)

    amount_paid: Mapped[Decimal] = mapped_column(nullable=False)

    start_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    paid_date: Mapped[date | None] = mapped_column(nullable=True)
    confiscated_date: Mapped[date | None] = mapped_column(nullable=True)
    cancelled_date: Mapped[date | None] = mapped_column(nullable=True)

    payment_plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    loan_term_days: Mapped[int] = mapped_column(Integer, nullable=False)
    requires_minimum_payment: Mapped[bool] = mapped_column(default=False, nullable=False)
    minimum_payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    grace_period_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    number_of_installments: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    days_overdue: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    renewed_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    installments: Mapped[list["LoanInstallmentModel"]] = relationship(
        back_populates="loan",
        order_by="LoanInstallmentModel.installment_number",
        lazy="selectin",
    )

    @property
    def balances(self) -> LoanBalances:
        return LoanBalances(
            principal_remaining=self.principal_remaining,
            interest_remaining=self.interest_remaining,
            late_fee_remaining=self.late_fee_remaining,
        )

    def to_dto(self) -> Loan:
        return Loan(
            id=self.id,
            loan_number=self.loan_number,
            branch_id=self.branch_id,
            customer_id=self.customer_id,
            item_id=self.item_id,
            category_code=self.category_code,
            loan_amount=self.loan_amount,
            interest_rate=self.interest_rate,
            interest_amount=self.interest_amount,
            total_amount=self.total_amount,
            principal_remaining=self.principal_remaining,
            interest_remaining=self.interest_remaining,
            late_fee_rate=self.late_fee_rate,
            late_fee_amount=self.late_fee_amount,
            late_fee_remaining=self.late_fee_remaining,
            amount_paid=self.amount_paid,
            start_date=self.start_date,
            due_date=self.due_date,
            paid_date=self.paid_date,
            confiscated_date=self.confiscated_date,
            cancelled_date=self.cancelled_date,
            payment_plan_type=PaymentPlanType(self.payment_plan_type),
            loan_term_days=self.loan_term_days,
            requires_minimum_payment=self.requires_minimum_payment,
            minimum_payment_amount=self.minimum_payment_amount,
            grace_period_days=self.grace_period_days,
            number_of_installments=self.number_of_installments,
            status=LoanStatus(self.status),
            days_overdue=self.days_overdue,
            renewal_count=self.renewal_count,
            renewed_from_id=self.renewed_from_id,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<LoanModel {self.loan_number} status={self.status}>"


# ---------------------------------------------------------------------------
# LoanInstallmentModel
# ---------------------------------------------------------------------------


class LoanInstallmentModel(TrackedBase):
    """
    ORM model for one scheduled installment.

    Table: ``loan_installments``
    """

    __tablename__ = "loan_installments"

    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="uq_loan_installments_number"),
        CheckConstraint("amount_paid >= 0", name="ck_loan_installments_paid_non_negative"),
    )

    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False)
    is_paid: Mapped[bool] = mapped_column(default=False, nullable=False)
    paid_date: Mapped[date | None] = mapped_column(nullable=True)

    loan: Mapped[LoanModel] = relationship(back_populates="installments")

    def to_dto(self) -> Installment:
        return Installment(
            id=self.id,
            loan_id=self.loan_id,
            installment_number=self.installment_number,
            due_date=self.due_date,
            principal_amount=self.principal_amount,
            interest_amount=self.interest_amount,
            total_amount=self.total_amount,
            amount_paid=self.amount_paid,
            is_paid=self.is_paid,
            paid_date=self.paid_date,
        )


# ---------------------------------------------------------------------------
# PaymentModel
# ---------------------------------------------------------------------------


class PaymentModel(TrackedBase):
    """
    ORM model for ``Payment``.

    Table: ``payments``

    The split (principal/interest/late fee) is stored at creation and is the
    only input to a reversal; it is never recomputed.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("payment_number", name="uq_payments_payment_number"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "principal_amount + interest_amount + late_fee_amount = amount",
            name="ck_payments_split_matches_amount",
        ),
        Index("idx_payments_loan", "loan_id"),
        Index("idx_payments_session", "cash_session_id"),
    )

    payment_number: Mapped[str] = mapped_column(String(30), nullable=False)
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False,
    )
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(nullable=False)
    late_fee_amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(nullable=False)

    # Point-in-time snapshots; never recomputed
    loan_balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    interest_balance_after: Mapped[Decimal] = mapped_column(nullable=False)
    late_fee_balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    cash_session_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    accounting_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounting_entries.id"), nullable=True,
    )

    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("accounting_entries.id"), nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> Payment:
        return Payment(
            id=self.id,
            payment_number=self.payment_number,
            branch_id=self.branch_id,
            loan_id=self.loan_id,
            customer_id=self.customer_id,
            amount=self.amount,
            principal_amount=self.principal_amount,
            interest_amount=self.interest_amount,
            late_fee_amount=self.late_fee_amount,
            payment_method=PaymentMethod(self.payment_method),
            reference_number=self.reference_number,
            status=PaymentStatus(self.status),
            payment_date=self.payment_date,
            loan_balance_after=self.loan_balance_after,
            interest_balance_after=self.interest_balance_after,
            late_fee_balance_after=self.late_fee_balance_after,
            cash_session_id=self.cash_session_id,
            accounting_entry_id=self.accounting_entry_id,
            reversed_at=self.reversed_at,
            reversed_by_id=self.reversed_by_id,
            reversal_reason=self.reversal_reason,
            reversal_entry_id=self.reversal_entry_id,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.payment_number} {self.amount} status={self.status}>"
