"""
pawn_modules.loans.payment_service
==================================

Responsibility:
    Records payments against loans and reverses them.  A payment moves
    money out of the loan's buckets (late fee, then interest, then
    principal), writes the cash movement and the accounting entry, and
    reports the customer's credit change.  A reversal puts the stored
    split back and posts the refund.

Architecture:
    Module layer.  ``PaymentRecorder`` is the flush-only component shared
    with LoanService (the interest payment taken on renewal goes through
    it).  ``PaymentService`` owns the transaction for the public
    operations and calls the item, customer and audit collaborators only
    after commit.

Invariants enforced:
    - The loan row is locked before its balances are read.
    - Payment + cash movement + entry + loan update commit together or
      not at all.
    - A payment is reversed at most once; the reversal uses the stored
      split, never a recomputation.
    - Payments on confiscated or renewed loans cannot be reversed.

Failure modes:
    - LoanNotFoundError / PaymentNotFoundError for unknown ids.
    - InvalidLoanTransitionError: loan is not active or overdue.
    - CashSessionRequiredError: cash payment without a cash session.
    - NonPositiveAmountError / OverpaymentError from the allocator.
    - PaymentAlreadyReversedError / IrreversibleLoanStateError on reversal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from pawn_config.schema import LedgerConfig
from pawn_kernel.db.engine import transaction
from pawn_kernel.db.types import ZERO
from pawn_kernel.domain.clock import Clock, SystemClock
from pawn_kernel.domain.collaborators import Collaborators, CreditDelta, ItemStatus
from pawn_kernel.exceptions import (
    CashSessionRequiredError,
    InvalidLoanTransitionError,
    IrreversibleLoanStateError,
    PaymentAlreadyReversedError,
    PaymentNotFoundError,
)
from pawn_kernel.logging_config import LogContext, get_logger
from pawn_kernel.services.accounting_poster import AccountingPoster
from pawn_kernel.services.base import BaseService
from pawn_kernel.services.numbering_service import NumberingService
from pawn_modules._posting_helpers import build_poster, loan_snapshot
from pawn_modules.cash.ledger import CashSessionLedger
from pawn_modules.cash.models import CashSessionStatus, MovementReference, MovementType
from pawn_modules.loans.allocator import PaymentAllocator
from pawn_modules.loans.calculator import minimum_payment_due
from pawn_modules.loans.ledger import LoanLedger
from pawn_modules.loans.models import (
    OPEN_LOAN_STATUSES,
    LoanBalances,
    LoanStatus,
    MakePaymentInput,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ReversePaymentInput,
)
from pawn_modules.loans.orm import LoanModel, PaymentModel

logger = get_logger("modules.loans.payments")

_IRREVERSIBLE_LOAN_STATUSES = frozenset({LoanStatus.CONFISCATED, LoanStatus.RENEWED})


@dataclass(frozen=True)
class ReversalOutcome:
    payment: PaymentModel
    loan: LoanModel
    loan_was_paid: bool


class PaymentRecorder(BaseService):
    """
    Flush-only payment persistence.

    Contract:
        ``record`` expects a loan locked and re-assessed in the current
        transaction.  ``reverse`` locks the payment and its loan itself.
    """

    def __init__(
        self,
        session: Session,
        ledger: LoanLedger,
        cash: CashSessionLedger,
        poster: AccountingPoster,
        numbering: NumberingService | None = None,
        allocator: PaymentAllocator | None = None,
    ):
        super().__init__(session)
        self._ledger = ledger
        self._cash = cash
        self._poster = poster
        self._numbering = numbering or NumberingService(session)
        self._allocator = allocator or PaymentAllocator()

    def lock_payment(self, payment_id: UUID) -> PaymentModel:
        payment = self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def record(
        self,
        loan: LoanModel,
        amount: Decimal,
        payment_method: PaymentMethod,
        actor_id: UUID,
        as_of: date,
        paid_at: datetime,
        cash_session_id: UUID | None = None,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> PaymentModel:
        """
        Apply ``amount`` to ``loan`` and persist the payment.

        The entry is posted before the payment row is inserted so the row
        is written once, already carrying its entry id.
        """
        if LoanStatus(loan.status) not in OPEN_LOAN_STATUSES:
            raise InvalidLoanTransitionError(str(loan.id), loan.status, "accept a payment on")
        method = PaymentMethod(payment_method)
        if method == PaymentMethod.CASH and cash_session_id is None:
            raise CashSessionRequiredError("payment")

        allocation = self._allocator.allocate(loan.balances, amount)
        self._ledger.apply_allocation(loan, allocation, as_of, actor_id)

        payment_id = uuid4()
        payment_number = self._numbering.next_payment_number(as_of)

        if cash_session_id is not None:
            self._cash.record_movement(
                session_id=cash_session_id,
                movement_type=MovementType.INCOME,
                amount=allocation.total,
                payment_method=method.value,
                description=f"Payment {payment_number} on loan {loan.loan_number}",
                actor_id=actor_id,
                reference_type=MovementReference.PAYMENT,
                reference_id=payment_id,
            )

        entry = self._poster.post_loan_payment(
            branch_id=loan.branch_id,
            payment_id=payment_id,
            payment_number=payment_number,
            principal=allocation.principal,
            interest=allocation.interest,
            late_fee=allocation.late_fee,
            entry_date=as_of,
            actor_id=actor_id,
            payment_method=method.value,
        )

        payment = PaymentModel(
            id=payment_id,
            payment_number=payment_number,
            branch_id=loan.branch_id,
            loan_id=loan.id,
            customer_id=loan.customer_id,
            amount=allocation.total,
            principal_amount=allocation.principal,
            interest_amount=allocation.interest,
            late_fee_amount=allocation.late_fee,
            payment_method=method.value,
            reference_number=reference_number,
            status=PaymentStatus.COMPLETED.value,
            payment_date=paid_at,
            loan_balance_after=loan.principal_remaining,
            interest_balance_after=loan.interest_remaining,
            late_fee_balance_after=loan.late_fee_remaining,
            cash_session_id=cash_session_id,
            accounting_entry_id=entry.id if entry is not None else None,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self.session.flush()

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "payment_number": payment_number,
                "loan_id": str(loan.id),
                "amount": str(payment.amount),
                "late_fee": str(allocation.late_fee),
                "interest": str(allocation.interest),
                "principal": str(allocation.principal),
                "loan_status": loan.status,
            },
        )
        return payment

    def reverse(
        self,
        payment_id: UUID,
        reason: str,
        actor_id: UUID,
        as_of: date,
        reversed_at: datetime,
    ) -> ReversalOutcome:
        payment = self.lock_payment(payment_id)
        if PaymentStatus(payment.status) == PaymentStatus.REVERSED:
            raise PaymentAlreadyReversedError(str(payment_id))

        loan = self._ledger.lock(payment.loan_id)
        if LoanStatus(loan.status) in _IRREVERSIBLE_LOAN_STATUSES:
            raise IrreversibleLoanStateError(str(loan.id), loan.status)

        allocation = self._allocator.inverse(payment)
        was_paid = self._ledger.restore_allocation(loan, allocation, as_of, actor_id)

        if payment.cash_session_id is not None:
            cash_session = self._cash.get(payment.cash_session_id)
            if cash_session.status == CashSessionStatus.OPEN.value:
                self._cash.record_movement(
                    session_id=cash_session.id,
                    movement_type=MovementType.EXPENSE,
                    amount=payment.amount,
                    payment_method=payment.payment_method,
                    description=f"Reversal of payment {payment.payment_number}",
                    actor_id=actor_id,
                    reference_type=MovementReference.PAYMENT_REVERSAL,
                    reference_id=payment.id,
                )
            else:
                logger.info(
                    "payment_reversal_session_closed",
                    extra={
                        "payment_id": str(payment.id),
                        "session_id": str(payment.cash_session_id),
                    },
                )

        entry = self._poster.post_payment_reversal(
            original_entry_id=payment.accounting_entry_id,
            payment_id=payment.id,
            payment_number=payment.payment_number,
            reason=reason,
            entry_date=as_of,
            actor_id=actor_id,
        )

        payment.status = PaymentStatus.REVERSED.value
        payment.reversed_at = reversed_at
        payment.reversed_by_id = actor_id
        payment.reversal_reason = reason
        payment.reversal_entry_id = entry.id if entry is not None else None
        payment.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "payment_reversed",
            extra={
                "payment_id": str(payment.id),
                "loan_id": str(loan.id),
                "amount": str(payment.amount),
                "loan_status": loan.status,
                "loan_reopened": was_paid,
            },
        )
        return ReversalOutcome(payment=payment, loan=loan, loan_was_paid=was_paid)


class PaymentService:
    """
    Payment orchestrator.

    Contract:
        ``make_payment`` and ``reverse_payment`` each run in one
        transaction.  Collaborators are notified after commit, so a
        collaborator failure never undoes a committed payment.

    Non-goals:
        - Does NOT retry on lock conflicts; the caller decides.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        collaborators: Collaborators | None = None,
        poster: AccountingPoster | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._collaborators = collaborators or Collaborators.defaults()
        numbering = NumberingService(session)
        self._ledger = LoanLedger(session, config, numbering=numbering)
        self._cash = CashSessionLedger(session, allow_negative_cash=config.allow_negative_cash)
        self._poster = poster or build_poster(session, config, self._clock, numbering)
        self._recorder = PaymentRecorder(
            session, self._ledger, self._cash, self._poster, numbering=numbering
        )

    @property
    def recorder(self) -> PaymentRecorder:
        return self._recorder

    # =========================================================================
    # Mutations
    # =========================================================================

    def make_payment(self, request: MakePaymentInput) -> Payment:
        """
        Apply a payment to a loan.

        Raises:
            LoanNotFoundError, InvalidLoanTransitionError,
            CashSessionRequiredError, NonPositiveAmountError,
            OverpaymentError, SessionNotOpenError.
        """
        as_of = self._clock.today()
        with LogContext.bind(actor_id=request.actor_id, loan_id=request.loan_id):
            with transaction(self._session):
                loan = self._ledger.lock(request.loan_id)
                self._ledger.recompute_overdue(loan, as_of)
                before = loan_snapshot(loan)
                payment = self._recorder.record(
                    loan=loan,
                    amount=request.amount,
                    payment_method=request.payment_method,
                    actor_id=request.actor_id,
                    as_of=as_of,
                    paid_at=self._clock.now_utc(),
                    cash_session_id=request.cash_session_id,
                    reference_number=request.reference_number,
                    notes=request.notes,
                )
                result = payment.to_dto()
                after = loan_snapshot(loan)
                paid_off = loan.status == LoanStatus.PAID.value
                customer_id, item_id, loan_id = loan.customer_id, loan.item_id, loan.id

            self._collaborators.customers.update_credit_info(
                customer_id, CreditDelta(total_paid=result.amount)
            )
            if paid_off:
                self._collaborators.items.update_status(item_id, ItemStatus.AVAILABLE)
            self._collaborators.audit.record(
                "Payment", "loan", loan_id, before, after, request.actor_id
            )
            return result

    def reverse_payment(self, request: ReversePaymentInput) -> Payment:
        """
        Undo a completed payment with its stored split.

        Raises:
            PaymentNotFoundError, PaymentAlreadyReversedError,
            IrreversibleLoanStateError, InsufficientCashError.
        """
        as_of = self._clock.today()
        with LogContext.bind(actor_id=request.actor_id, payment_id=request.payment_id):
            with transaction(self._session):
                outcome = self._recorder.reverse(
                    payment_id=request.payment_id,
                    reason=request.reason,
                    actor_id=request.actor_id,
                    as_of=as_of,
                    reversed_at=self._clock.now_utc(),
                )
                result = outcome.payment.to_dto()
                loan = outcome.loan
                customer_id, item_id = loan.customer_id, loan.item_id

            self._collaborators.customers.update_credit_info(
                customer_id, CreditDelta(total_paid=-result.amount)
            )
            if outcome.loan_was_paid:
                self._collaborators.items.update_status(item_id, ItemStatus.COLLATERAL)
            self._collaborators.audit.record(
                "Reverse",
                "payment",
                result.id,
                {"status": PaymentStatus.COMPLETED.value, "amount": str(result.amount)},
                {"status": result.status.value, "reason": request.reason},
                request.actor_id,
            )
            return result

    # =========================================================================
    # Reads
    # =========================================================================

    def _current_balances(self, loan: LoanModel, as_of: date | None) -> LoanBalances:
        assessment = self._ledger.assess(loan, as_of or self._clock.today())
        return LoanBalances(
            principal_remaining=loan.principal_remaining,
            interest_remaining=loan.interest_remaining,
            late_fee_remaining=assessment.late_fee_remaining,
        )

    def payoff_quote(self, loan_id: UUID, as_of: date | None = None) -> Decimal:
        """Amount that settles the loan on ``as_of``, late fee included."""
        loan = self._ledger.get(loan_id)
        if LoanStatus(loan.status) not in OPEN_LOAN_STATUSES:
            return ZERO
        return self._current_balances(loan, as_of).payoff

    def minimum_payment_due(self, loan_id: UUID, as_of: date | None = None) -> Decimal:
        loan = self._ledger.get(loan_id)
        if LoanStatus(loan.status) not in OPEN_LOAN_STATUSES:
            return ZERO
        return minimum_payment_due(
            self._current_balances(loan, as_of),
            loan.requires_minimum_payment,
            loan.minimum_payment_amount,
        )

    def get_payment(self, payment_id: UUID) -> Payment:
        payment = self._session.get(PaymentModel, payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment.to_dto()

    def payments_for_loan(self, loan_id: UUID) -> list[Payment]:
        self._ledger.get(loan_id)
        rows = self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.loan_id == loan_id)
            .order_by(PaymentModel.payment_date, PaymentModel.payment_number)
        ).scalars()
        return [p.to_dto() for p in rows]
