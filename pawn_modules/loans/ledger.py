"""
LoanLedger -- persistence and state machine of loans.

Responsibility:
    Creates loans (with their installment schedule), applies and restores
    payment allocations, re-derives overdue state, and performs the
    lifecycle transitions: activate, renew, confiscate, cancel.

Architecture position:
    Module layer -- flush-only component service.  LoanService and
    PaymentService own the transaction; this class never commits.

State machine:
    pending  -> active | cancelled
    active   -> overdue | paid | renewed | cancelled (no payments yet)
    overdue  -> active | paid | renewed | confiscated
    paid     -> active | overdue            (payment reversal only)
    renewed, confiscated, cancelled         terminal

Invariants enforced:
    - Conservation: principal_remaining + interest_remaining +
      late_fee_remaining + amount_paid == total_amount + late_fee_amount
      after every method.
    - Renewal never rewrites the previous loan's balances; it closes the
      row as ``renewed`` and creates a new loan pointing back to it.
    - Lost updates are prevented by ``lock()`` (SELECT ... FOR UPDATE) and
      the ``version`` column.

Failure modes:
    - LoanNotFoundError for unknown ids.
    - InvalidInputError / OutOfRangeError for bad loan terms.
    - InvalidLoanTransitionError for illegal transitions.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pawn_config.schema import LedgerConfig
from pawn_kernel.db.types import ZERO, to_money, to_rate
from pawn_kernel.exceptions import (
    InvalidInputError,
    InvalidLoanTransitionError,
    LoanNotFoundError,
    OutOfRangeError,
)
from pawn_kernel.logging_config import get_logger
from pawn_kernel.services.base import BaseService
from pawn_kernel.services.numbering_service import NumberingService
from pawn_modules.loans.allocator import PaymentAllocator
from pawn_modules.loans.calculator import (
    OverdueState,
    assess_overdue,
    compute_due_date,
    compute_interest,
    confiscation_date,
)
from pawn_modules.loans.models import (
    OPEN_LOAN_STATUSES,
    AllocationResult,
    CreateLoanInput,
    LoanQuote,
    LoanStatus,
    OverdueAssessment,
    PaymentPlanType,
)
from pawn_modules.loans.orm import LoanInstallmentModel, LoanModel
from pawn_modules.loans.planner import InstallmentPlanner

logger = get_logger("modules.loans.ledger")


@dataclass(frozen=True)
class _Terms:
    """Transient terms handed to the planner before a row exists."""

    loan_amount: Decimal
    total_amount: Decimal
    start_date: date
    number_of_installments: int | None
    requires_minimum_payment: bool
    payment_plan_type: str


@dataclass(frozen=True)
class RenewalOutcome:
    new_loan: LoanModel
    capitalised_interest: Decimal
    capitalised_late_fee: Decimal

    @property
    def capitalised_amount(self) -> Decimal:
        return self.capitalised_interest + self.capitalised_late_fee


class LoanLedger(BaseService):
    """
    Flush-only loan persistence.

    Contract:
        Every mutating method expects the loan row to have been obtained
        through ``lock()`` in the current transaction.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        numbering: NumberingService | None = None,
        planner: InstallmentPlanner | None = None,
        allocator: PaymentAllocator | None = None,
    ):
        super().__init__(session)
        self._config = config
        self._numbering = numbering or NumberingService(session)
        self._planner = planner or InstallmentPlanner()
        self._allocator = allocator or PaymentAllocator()

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, loan_id: UUID) -> LoanModel:
        loan = self.session.get(LoanModel, loan_id)
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def lock(self, loan_id: UUID) -> LoanModel:
        """Load the loan row with a row-level lock held until the transaction ends."""
        loan = self.session.execute(
            select(LoanModel)
            .where(LoanModel.id == loan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def open_loan_ids(self, branch_id: UUID | None = None) -> list[UUID]:
        """Ids of active and overdue loans, oldest due date first."""
        query = select(LoanModel.id).where(
            LoanModel.status.in_([s.value for s in OPEN_LOAN_STATUSES])
        )
        if branch_id is not None:
            query = query.where(LoanModel.branch_id == branch_id)
        return list(self.session.execute(query.order_by(LoanModel.due_date)).scalars())

    # =========================================================================
    # Creation
    # =========================================================================

    def _validate(self, request: CreateLoanInput) -> None:
        amount = to_money(request.loan_amount)
        if amount <= ZERO:
            raise InvalidInputError("loan_amount", "must be greater than zero")
        if to_rate(request.interest_rate) < ZERO:
            raise InvalidInputError("interest_rate", "must not be negative")
        if to_rate(request.late_fee_rate) < ZERO:
            raise InvalidInputError("late_fee_rate", "must not be negative")
        if request.grace_period_days is not None and request.grace_period_days < 0:
            raise InvalidInputError("grace_period_days", "must not be negative")

        plan = PaymentPlanType(request.payment_plan_type)
        if plan == PaymentPlanType.INSTALLMENTS:
            if not request.number_of_installments or request.number_of_installments <= 0:
                raise InvalidInputError(
                    "number_of_installments", "must be positive for an installment plan"
                )
        elif request.loan_term_days <= 0:
            raise InvalidInputError("loan_term_days", "must be greater than zero")

        if request.requires_minimum_payment and request.minimum_payment_amount is not None:
            if to_money(request.minimum_payment_amount) <= ZERO:
                raise InvalidInputError("minimum_payment_amount", "must be greater than zero")

        if request.max_loan_value is not None and amount > to_money(request.max_loan_value):
            raise InvalidInputError(
                "loan_amount",
                f"{amount} exceeds the item's loan value {to_money(request.max_loan_value)}",
            )

        limits = self._config.limits_for(request.category_code)
        if limits is None:
            return
        lo, hi = limits.min_loan_amount, limits.max_loan_amount
        if (lo is not None and amount < lo) or (hi is not None and amount > hi):
            raise OutOfRangeError("loan_amount", amount, lo, hi)
        if plan != PaymentPlanType.INSTALLMENTS:
            lo_days, hi_days = limits.min_term_days, limits.max_term_days
            term = request.loan_term_days
            if (lo_days is not None and term < lo_days) or (
                hi_days is not None and term > hi_days
            ):
                raise OutOfRangeError("loan_term_days", term, lo_days, hi_days)

    def quote(self, request: CreateLoanInput, as_of: date) -> LoanQuote:
        """
        Terms the request would produce.  Validates but writes nothing.

        Raises:
            InvalidInputError, OutOfRangeError.
        """
        self._validate(request)
        plan = PaymentPlanType(request.payment_plan_type)
        amount = to_money(request.loan_amount)
        rate = to_rate(request.interest_rate)

        interest = compute_interest(amount, rate, plan, request.number_of_installments)
        total = amount + interest
        due = compute_due_date(
            as_of, request.loan_term_days, plan, request.number_of_installments
        )
        schedule = self._planner.generate_schedule(
            _Terms(
                loan_amount=amount,
                total_amount=total,
                start_date=as_of,
                number_of_installments=request.number_of_installments,
                requires_minimum_payment=request.requires_minimum_payment,
                payment_plan_type=plan.value,
            )
        )
        return LoanQuote(
            loan_amount=amount,
            interest_amount=interest,
            total_amount=total,
            start_date=as_of,
            due_date=due,
            loan_term_days=(due - as_of).days,
            installments=tuple(schedule),
        )

    def create(self, request: CreateLoanInput, as_of: date) -> LoanModel:
        """
        Persist a new loan and its schedule.

        Postconditions:
            - status is ``pending`` when approval is required, else ``active``.
            - principal_remaining == loan_amount, interest_remaining ==
              interest_amount, amount_paid == 0.
        """
        quote = self.quote(request, as_of)
        status = (
            LoanStatus.PENDING if self._config.require_loan_approval else LoanStatus.ACTIVE
        )
        grace = (
            request.grace_period_days
            if request.grace_period_days is not None
            else self._config.default_grace_period_days
        )
        minimum = (
            to_money(request.minimum_payment_amount)
            if request.requires_minimum_payment and request.minimum_payment_amount is not None
            else None
        )

        loan = LoanModel(
            loan_number=self._numbering.next_loan_number(as_of),
            branch_id=request.branch_id,
            customer_id=request.customer_id,
            item_id=request.item_id,
            category_code=request.category_code,
            loan_amount=quote.loan_amount,
            interest_rate=to_rate(request.interest_rate),
            interest_amount=quote.interest_amount,
            total_amount=quote.total_amount,
            principal_remaining=quote.loan_amount,
            interest_remaining=quote.interest_amount,
            late_fee_rate=to_rate(request.late_fee_rate),
            late_fee_amount=ZERO,
            late_fee_remaining=ZERO,
            amount_paid=ZERO,
            start_date=as_of,
            due_date=quote.due_date,
            payment_plan_type=PaymentPlanType(request.payment_plan_type).value,
            loan_term_days=quote.loan_term_days,
            requires_minimum_payment=request.requires_minimum_payment,
            minimum_payment_amount=minimum,
            grace_period_days=grace,
            number_of_installments=request.number_of_installments,
            status=status.value,
            days_overdue=0,
            renewal_count=0,
            notes=request.notes,
            created_by_id=request.actor_id,
        )
        self.session.add(loan)
        self.session.flush()

        self._persist_schedule(loan, quote.installments, request.actor_id)

        logger.info(
            "loan_created",
            extra={
                "loan_id": str(loan.id),
                "loan_number": loan.loan_number,
                "loan_amount": str(loan.loan_amount),
                "interest_amount": str(loan.interest_amount),
                "status": loan.status,
                "installments": len(quote.installments),
            },
        )
        return loan

    def _persist_schedule(self, loan: LoanModel, schedule, actor_id: UUID) -> None:
        for scheduled in schedule:
            self.session.add(
                LoanInstallmentModel(
                    loan_id=loan.id,
                    installment_number=scheduled.installment_number,
                    due_date=scheduled.due_date,
                    principal_amount=scheduled.principal_amount,
                    interest_amount=scheduled.interest_amount,
                    total_amount=scheduled.total_amount,
                    amount_paid=ZERO,
                    is_paid=False,
                    created_by_id=actor_id,
                )
            )
        if schedule:
            self.session.flush()
            self.session.refresh(loan, attribute_names=["installments"])

    # =========================================================================
    # Overdue assessment
    # =========================================================================

    def assess(self, loan: LoanModel, as_of: date) -> OverdueAssessment:
        """Overdue status and late fee as of ``as_of``, without writing them."""
        return assess_overdue(
            OverdueState(
                status=LoanStatus(loan.status),
                due_date=loan.due_date,
                principal_remaining=loan.principal_remaining,
                interest_remaining=loan.interest_remaining,
                late_fee_rate=loan.late_fee_rate,
                late_fee_amount=loan.late_fee_amount,
                late_fee_remaining=loan.late_fee_remaining,
                days_overdue=loan.days_overdue,
            ),
            as_of,
            self._config.late_fee_period_days,
        )

    def recompute_overdue(self, loan: LoanModel, as_of: date) -> OverdueAssessment:
        """
        Re-derive overdue status and late fee and write them to the row.

        Idempotent: a second call with the same ``as_of`` changes nothing.
        """
        assessment = self.assess(loan, as_of)
        changed = (
            assessment.status.value != loan.status
            or assessment.days_overdue != loan.days_overdue
            or assessment.late_fee_amount != loan.late_fee_amount
            or assessment.late_fee_remaining != loan.late_fee_remaining
        )
        if changed:
            previous_status = loan.status
            loan.status = assessment.status.value
            loan.days_overdue = assessment.days_overdue
            loan.late_fee_amount = assessment.late_fee_amount
            loan.late_fee_remaining = assessment.late_fee_remaining
            self.session.flush()
            logger.info(
                "loan_overdue_recomputed",
                extra={
                    "loan_id": str(loan.id),
                    "from_status": previous_status,
                    "to_status": loan.status,
                    "days_overdue": loan.days_overdue,
                    "late_fee_amount": str(loan.late_fee_amount),
                },
            )
        return assessment

    # =========================================================================
    # Payments
    # =========================================================================

    def apply_allocation(
        self,
        loan: LoanModel,
        allocation: AllocationResult,
        as_of: date,
        actor_id: UUID,
    ) -> None:
        """Move an allocated payment out of the buckets; mark paid when settled."""
        loan.late_fee_remaining -= allocation.late_fee
        loan.interest_remaining -= allocation.interest
        loan.principal_remaining -= allocation.principal
        loan.amount_paid += allocation.total
        loan.updated_by_id = actor_id

        self._move_installments(loan, allocation.principal + allocation.interest, as_of)

        if allocation.fully_paid:
            loan.status = LoanStatus.PAID.value
            loan.paid_date = as_of
            loan.days_overdue = 0
        self.session.flush()

    def restore_allocation(
        self,
        loan: LoanModel,
        allocation: AllocationResult,
        as_of: date,
        actor_id: UUID,
    ) -> bool:
        """
        Add a reversed payment back to the buckets.

        Returns True when the loan was paid and has been reopened.
        """
        was_paid = LoanStatus(loan.status) == LoanStatus.PAID

        loan.late_fee_remaining += allocation.late_fee
        loan.interest_remaining += allocation.interest
        loan.principal_remaining += allocation.principal
        loan.amount_paid -= allocation.total
        loan.updated_by_id = actor_id

        self._withdraw_installments(loan, allocation.principal + allocation.interest)

        if was_paid:
            loan.status = LoanStatus.ACTIVE.value
            loan.paid_date = None
        self.session.flush()
        self.recompute_overdue(loan, as_of)
        return was_paid

    def _move_installments(self, loan: LoanModel, amount: Decimal, as_of: date) -> None:
        if not loan.installments or amount <= ZERO:
            return
        by_id = {i.id: i for i in loan.installments}
        for application in self._allocator.spread_over_installments(loan.installments, amount):
            installment = by_id[application.installment_id]
            installment.amount_paid += application.amount
            if installment.amount_paid >= installment.total_amount:
                installment.is_paid = True
                installment.paid_date = as_of

    def _withdraw_installments(self, loan: LoanModel, amount: Decimal) -> None:
        if not loan.installments or amount <= ZERO:
            return
        by_id = {i.id: i for i in loan.installments}
        for withdrawal in self._allocator.withdraw_from_installments(loan.installments, amount):
            installment = by_id[withdrawal.installment_id]
            installment.amount_paid -= withdrawal.amount
            if installment.amount_paid < installment.total_amount:
                installment.is_paid = False
                installment.paid_date = None

    # =========================================================================
    # Transitions
    # =========================================================================

    def activate(self, loan: LoanModel, actor_id: UUID) -> None:
        """pending -> active."""
        if LoanStatus(loan.status) != LoanStatus.PENDING:
            raise InvalidLoanTransitionError(str(loan.id), loan.status, "approve")
        loan.status = LoanStatus.ACTIVE.value
        loan.updated_by_id = actor_id
        self.session.flush()
        logger.info("loan_activated", extra={"loan_id": str(loan.id)})

    def renew(
        self,
        loan: LoanModel,
        new_term_days: int,
        pay_interest: bool,
        new_interest_rate: Decimal | None,
        as_of: date,
        actor_id: UUID,
    ) -> RenewalOutcome:
        """
        Close ``loan`` as renewed and open its successor.

        With ``pay_interest`` the interest and late fee must already be
        settled.  Otherwise they are capitalised into the new principal.
        Installment plans renew as single-payment loans for the new term.
        """
        if LoanStatus(loan.status) not in OPEN_LOAN_STATUSES:
            raise InvalidLoanTransitionError(str(loan.id), loan.status, "renew")
        if new_term_days <= 0:
            raise InvalidInputError("new_term_days", "must be greater than zero")
        if pay_interest and (loan.interest_remaining > ZERO or loan.late_fee_remaining > ZERO):
            raise InvalidInputError(
                "pay_interest", "interest and late fee must be paid before renewal"
            )

        rate = loan.interest_rate if new_interest_rate is None else to_rate(new_interest_rate)
        if rate < ZERO:
            raise InvalidInputError("new_interest_rate", "must not be negative")

        capitalised_interest = ZERO if pay_interest else loan.interest_remaining
        capitalised_fee = ZERO if pay_interest else loan.late_fee_remaining
        principal = loan.principal_remaining + capitalised_interest + capitalised_fee
        if principal <= ZERO:
            raise InvalidLoanTransitionError(str(loan.id), loan.status, "renew a settled")

        plan = PaymentPlanType(loan.payment_plan_type)
        if plan == PaymentPlanType.INSTALLMENTS:
            plan = PaymentPlanType.SINGLE
        interest = compute_interest(principal, rate, plan)

        loan.status = LoanStatus.RENEWED.value
        loan.updated_by_id = actor_id
        self.session.flush()

        successor = LoanModel(
            loan_number=self._numbering.next_loan_number(as_of),
            branch_id=loan.branch_id,
            customer_id=loan.customer_id,
            item_id=loan.item_id,
            category_code=loan.category_code,
            loan_amount=principal,
            interest_rate=rate,
            interest_amount=interest,
            total_amount=principal + interest,
            principal_remaining=principal,
            interest_remaining=interest,
            late_fee_rate=loan.late_fee_rate,
            late_fee_amount=ZERO,
            late_fee_remaining=ZERO,
            amount_paid=ZERO,
            start_date=as_of,
            due_date=compute_due_date(as_of, new_term_days),
            payment_plan_type=plan.value,
            loan_term_days=new_term_days,
            requires_minimum_payment=loan.requires_minimum_payment,
            minimum_payment_amount=loan.minimum_payment_amount,
            grace_period_days=loan.grace_period_days,
            number_of_installments=None,
            status=LoanStatus.ACTIVE.value,
            days_overdue=0,
            renewal_count=loan.renewal_count + 1,
            renewed_from_id=loan.id,
            created_by_id=actor_id,
        )
        self.session.add(successor)
        self.session.flush()

        logger.info(
            "loan_renewed",
            extra={
                "loan_id": str(loan.id),
                "new_loan_id": str(successor.id),
                "new_loan_number": successor.loan_number,
                "renewal_count": successor.renewal_count,
                "capitalised_interest": str(capitalised_interest),
                "capitalised_late_fee": str(capitalised_fee),
            },
        )
        return RenewalOutcome(successor, capitalised_interest, capitalised_fee)

    def confiscate(
        self,
        loan: LoanModel,
        notes: str | None,
        as_of: date,
        actor_id: UUID,
    ) -> None:
        """overdue -> confiscated, once the grace window past the due date has ended."""
        if LoanStatus(loan.status) != LoanStatus.OVERDUE:
            raise InvalidLoanTransitionError(str(loan.id), loan.status, "confiscate")
        if as_of < confiscation_date(loan.due_date, loan.grace_period_days):
            raise InvalidLoanTransitionError(
                str(loan.id), loan.status, "confiscate within the grace period"
            )
        loan.status = LoanStatus.CONFISCATED.value
        loan.confiscated_date = as_of
        if notes:
            loan.notes = notes
        loan.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "loan_confiscated",
            extra={
                "loan_id": str(loan.id),
                "principal_remaining": str(loan.principal_remaining),
                "days_overdue": loan.days_overdue,
            },
        )

    def cancel(
        self,
        loan: LoanModel,
        reason: str | None,
        as_of: date,
        actor_id: UUID,
    ) -> None:
        """
        pending, or active with nothing paid -> cancelled.

        A renewal successor never disbursed new principal, so it cannot be
        cancelled; its charges are already income and its item stays pledged.
        """
        status = LoanStatus(loan.status)
        cancellable = loan.renewed_from_id is None and (
            status == LoanStatus.PENDING
            or (status == LoanStatus.ACTIVE and loan.amount_paid == ZERO)
        )
        if not cancellable:
            raise InvalidLoanTransitionError(str(loan.id), loan.status, "cancel")
        loan.status = LoanStatus.CANCELLED.value
        loan.cancelled_date = as_of
        if reason:
            loan.notes = reason
        loan.updated_by_id = actor_id
        self.session.flush()
        logger.info("loan_cancelled", extra={"loan_id": str(loan.id), "from_status": status.value})
