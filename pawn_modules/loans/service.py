"""
pawn_modules.loans.service
==========================

Responsibility:
    Public entry point for the loan lifecycle: quote, create, approve,
    renew, confiscate, cancel, and the overdue sweep.  Each operation
    writes the loan, its cash movement and its accounting entry in one
    transaction, then tells the item, customer and audit collaborators.

Architecture:
    Module layer.  Thin orchestrator over LoanLedger (state machine),
    CashSessionLedger (register journal), AccountingPoster (double entry)
    and PaymentRecorder (the interest payment taken on renewal).

Invariants enforced:
    - Every read that returns a loan first re-derives its overdue state,
      so callers never see a stale status or late fee.
    - Collaborators run after commit and only for committed work.

Failure modes:
    - Any component error -> transaction rolled back, error re-raised.

Usage::

    service = LoanService(session, config, clock, collaborators)
    loan = service.create_loan(CreateLoanInput(...))
    service.renew_loan(RenewLoanInput(loan.id, 30, pay_interest=False, actor_id=...))
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from pawn_config.schema import LedgerConfig
from pawn_kernel.db.engine import transaction
from pawn_kernel.db.types import ZERO
from pawn_kernel.domain.clock import Clock, SystemClock
from pawn_kernel.domain.collaborators import Collaborators, CreditDelta, ItemStatus
from pawn_kernel.exceptions import CashSessionRequiredError, InvalidLoanTransitionError
from pawn_kernel.logging_config import LogContext, get_logger
from pawn_kernel.services.accounting_poster import AccountingPoster
from pawn_kernel.services.numbering_service import NumberingService
from pawn_modules._posting_helpers import build_poster, loan_snapshot
from pawn_modules.cash.ledger import CashSessionLedger
from pawn_modules.cash.models import MovementReference, MovementType
from pawn_modules.loans.ledger import LoanLedger
from pawn_modules.loans.models import (
    OPEN_LOAN_STATUSES,
    CreateLoanInput,
    Installment,
    Loan,
    LoanQuote,
    LoanStatus,
    PaymentMethod,
    RenewalResult,
    RenewLoanInput,
)
from pawn_modules.loans.orm import LoanModel
from pawn_modules.loans.payment_service import PaymentRecorder

logger = get_logger("modules.loans.service")


class LoanService:
    """
    Loan lifecycle orchestrator.

    Contract:
        Every mutating method commits before it returns, or rolls back and
        raises.  Returned values are frozen DTOs, safe to use after the
        session moves on.
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

    # =========================================================================
    # Creation
    # =========================================================================

    def quote(self, request: CreateLoanInput) -> LoanQuote:
        """Terms of ``request`` as of today.  Writes nothing."""
        return self._ledger.quote(request, self._clock.today())

    def create_loan(self, request: CreateLoanInput) -> Loan:
        """
        Create a loan against a pledged item.

        An active loan is disbursed immediately: an expense movement on
        ``request.cash_session_id`` (required for cash) and a disbursement
        entry.  A pending loan is disbursed by ``approve_loan``.

        Raises:
            InvalidInputError, OutOfRangeError, CashSessionRequiredError,
            SessionNotOpenError, InsufficientCashError.
        """
        as_of = self._clock.today()
        with LogContext.bind(actor_id=request.actor_id, branch_id=request.branch_id):
            with transaction(self._session):
                loan = self._ledger.create(request, as_of)
                if loan.status == LoanStatus.ACTIVE.value:
                    self._disburse(
                        loan, request.disbursement_method, request.cash_session_id,
                        as_of, request.actor_id,
                    )
                created = loan.to_dto()

            self._collaborators.items.update_status(created.item_id, ItemStatus.COLLATERAL)
            self._collaborators.customers.update_credit_info(
                created.customer_id, CreditDelta(total_loans=1)
            )
            self._collaborators.audit.record(
                "Create", "loan", created.id, None, loan_snapshot(created), request.actor_id
            )
            return created

    def approve_loan(
        self,
        loan_id: UUID,
        actor_id: UUID,
        cash_session_id: UUID | None = None,
        disbursement_method: PaymentMethod = PaymentMethod.CASH,
    ) -> Loan:
        """pending -> active, disbursing the principal."""
        as_of = self._clock.today()
        with LogContext.bind(actor_id=actor_id, loan_id=loan_id):
            with transaction(self._session):
                loan = self._ledger.lock(loan_id)
                before = loan_snapshot(loan)
                self._ledger.activate(loan, actor_id)
                self._disburse(loan, disbursement_method, cash_session_id, as_of, actor_id)
                approved = loan.to_dto()

            self._collaborators.audit.record(
                "Approve", "loan", approved.id, before, loan_snapshot(approved), actor_id
            )
            return approved

    def _disburse(
        self,
        loan: LoanModel,
        disbursement_method: PaymentMethod,
        cash_session_id: UUID | None,
        as_of: date,
        actor_id: UUID,
    ) -> None:
        method = PaymentMethod(disbursement_method)
        if method == PaymentMethod.CASH and cash_session_id is None:
            raise CashSessionRequiredError("disbursement")
        if cash_session_id is not None:
            self._cash.record_movement(
                session_id=cash_session_id,
                movement_type=MovementType.EXPENSE,
                amount=loan.loan_amount,
                payment_method=method.value,
                description=f"Loan disbursement {loan.loan_number}",
                actor_id=actor_id,
                reference_type=MovementReference.LOAN,
                reference_id=loan.id,
            )
        self._poster.post_loan_disbursement(
            branch_id=loan.branch_id,
            loan_id=loan.id,
            loan_number=loan.loan_number,
            amount=loan.loan_amount,
            entry_date=as_of,
            actor_id=actor_id,
            payment_method=method.value,
        )

    # =========================================================================
    # Renewal
    # =========================================================================

    def renew_loan(self, request: RenewLoanInput) -> RenewalResult:
        """
        Close the loan as renewed and open its successor.

        With ``pay_interest`` the outstanding interest and late fee are
        taken as a payment on the old loan first.  Without it they are
        capitalised into the new principal and recognised as income.

        Raises:
            LoanNotFoundError, InvalidLoanTransitionError, InvalidInputError,
            CashSessionRequiredError.
        """
        as_of = self._clock.today()
        with LogContext.bind(actor_id=request.actor_id, loan_id=request.loan_id):
            with transaction(self._session):
                loan = self._ledger.lock(request.loan_id)
                self._ledger.recompute_overdue(loan, as_of)
                if LoanStatus(loan.status) not in OPEN_LOAN_STATUSES:
                    raise InvalidLoanTransitionError(str(loan.id), loan.status, "renew")
                before = loan_snapshot(loan)

                interest_payment = None
                charges = loan.interest_remaining + loan.late_fee_remaining
                if request.pay_interest and charges > ZERO:
                    interest_payment = self._recorder.record(
                        loan=loan,
                        amount=charges,
                        payment_method=request.payment_method,
                        actor_id=request.actor_id,
                        as_of=as_of,
                        paid_at=self._clock.now_utc(),
                        cash_session_id=request.cash_session_id,
                        notes="Interest paid on renewal",
                    )

                outcome = self._ledger.renew(
                    loan,
                    new_term_days=request.new_term_days,
                    pay_interest=request.pay_interest,
                    new_interest_rate=request.new_interest_rate,
                    as_of=as_of,
                    actor_id=request.actor_id,
                )
                if outcome.capitalised_amount > ZERO:
                    self._poster.post_renewal_capitalisation(
                        branch_id=loan.branch_id,
                        loan_id=outcome.new_loan.id,
                        loan_number=outcome.new_loan.loan_number,
                        interest=outcome.capitalised_interest,
                        late_fee=outcome.capitalised_late_fee,
                        entry_date=as_of,
                        actor_id=request.actor_id,
                    )

                result = RenewalResult(
                    previous_loan=loan.to_dto(),
                    new_loan=outcome.new_loan.to_dto(),
                    interest_payment=(
                        interest_payment.to_dto() if interest_payment is not None else None
                    ),
                    capitalised_amount=outcome.capitalised_amount,
                )

            if result.interest_payment is not None:
                self._collaborators.customers.update_credit_info(
                    result.previous_loan.customer_id,
                    CreditDelta(total_paid=result.interest_payment.amount),
                )
            after = loan_snapshot(result.previous_loan)
            after["renewed_to"] = str(result.new_loan.id)
            after["new_loan_number"] = result.new_loan.loan_number
            self._collaborators.audit.record(
                "Renew", "loan", result.previous_loan.id, before, after, request.actor_id
            )
            return result

    # =========================================================================
    # Confiscation and cancellation
    # =========================================================================

    def confiscate_loan(
        self,
        loan_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
    ) -> Loan:
        """
        Forfeit the collateral of an overdue loan past its grace period.

        Raises:
            LoanNotFoundError, InvalidLoanTransitionError.
        """
        as_of = self._clock.today()
        with LogContext.bind(actor_id=actor_id, loan_id=loan_id):
            with transaction(self._session):
                loan = self._ledger.lock(loan_id)
                self._ledger.recompute_overdue(loan, as_of)
                before = loan_snapshot(loan)
                self._ledger.confiscate(loan, notes, as_of, actor_id)
                self._poster.post_confiscation(
                    branch_id=loan.branch_id,
                    loan_id=loan.id,
                    loan_number=loan.loan_number,
                    principal_remaining=loan.principal_remaining,
                    entry_date=as_of,
                    actor_id=actor_id,
                )
                confiscated = loan.to_dto()

            self._collaborators.items.update_status(confiscated.item_id, ItemStatus.CONFISCATED)
            self._collaborators.customers.update_credit_info(
                confiscated.customer_id,
                CreditDelta(total_defaulted=confiscated.payoff_amount),
            )
            self._collaborators.audit.record(
                "Confiscate", "loan", confiscated.id, before, loan_snapshot(confiscated), actor_id
            )
            return confiscated

    def cancel_loan(
        self,
        loan_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        cash_session_id: UUID | None = None,
    ) -> Loan:
        """
        Cancel a pending loan, or an active one with nothing paid.

        The disbursement entry is reversed.  When ``cash_session_id`` is
        given and the principal left a register, the returned principal is
        recorded as income on that session in the same method.  A renewal
        successor cannot be cancelled.

        Raises:
            LoanNotFoundError, InvalidLoanTransitionError.
        """
        as_of = self._clock.today()
        with LogContext.bind(actor_id=actor_id, loan_id=loan_id):
            with transaction(self._session):
                loan = self._ledger.lock(loan_id)
                self._ledger.recompute_overdue(loan, as_of)
                before = loan_snapshot(loan)
                disbursed = loan.status == LoanStatus.ACTIVE.value
                self._ledger.cancel(loan, reason, as_of, actor_id)

                if disbursed:
                    self._poster.post_loan_cancellation(
                        loan_id=loan.id,
                        loan_number=loan.loan_number,
                        reason=reason,
                        entry_date=as_of,
                        actor_id=actor_id,
                    )
                    paid_out = self._cash.movements_for_reference(
                        MovementReference.LOAN, loan.id
                    )
                    if cash_session_id is not None and paid_out:
                        self._cash.record_movement(
                            session_id=cash_session_id,
                            movement_type=MovementType.INCOME,
                            amount=paid_out[0].amount,
                            payment_method=paid_out[0].payment_method,
                            description=f"Loan cancellation {loan.loan_number}",
                            actor_id=actor_id,
                            reference_type=MovementReference.LOAN_CANCELLATION,
                            reference_id=loan.id,
                        )
                cancelled = loan.to_dto()

            self._collaborators.items.update_status(cancelled.item_id, ItemStatus.AVAILABLE)
            self._collaborators.customers.update_credit_info(
                cancelled.customer_id, CreditDelta(total_loans=-1)
            )
            self._collaborators.audit.record(
                "Cancel", "loan", cancelled.id, before, loan_snapshot(cancelled), actor_id
            )
            return cancelled

    # =========================================================================
    # Reads
    # =========================================================================

    def get_loan(self, loan_id: UUID) -> Loan:
        """The loan with its overdue state re-derived as of today."""
        with transaction(self._session):
            loan = self._ledger.lock(loan_id)
            self._ledger.recompute_overdue(loan, self._clock.today())
            return loan.to_dto()

    def installments(self, loan_id: UUID) -> list[Installment]:
        loan = self._ledger.get(loan_id)
        return [i.to_dto() for i in loan.installments]

    def sweep_overdue(self, branch_id: UUID | None = None) -> int:
        """
        Re-assess every open loan.  Returns how many changed status.

        Each loan is assessed in its own transaction; loans assessed before
        a failure stay committed.
        """
        as_of = self._clock.today()
        changed = 0
        for loan_id in self._ledger.open_loan_ids(branch_id):
            with transaction(self._session):
                loan = self._ledger.lock(loan_id)
                previous = loan.status
                self._ledger.recompute_overdue(loan, as_of)
                if loan.status != previous:
                    changed += 1
        logger.info(
            "overdue_sweep_completed",
            extra={"as_of": as_of.isoformat(), "status_changes": changed},
        )
        return changed
