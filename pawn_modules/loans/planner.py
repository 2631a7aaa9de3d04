"""
pawn_modules.loans.planner
==========================

Responsibility:
    Derives the installment schedule of a loan from its terms.

Architecture:
    Module layer, functional core.  ``InstallmentPlanner`` holds no state and
    performs no I/O; LoanLedger persists what it returns.

Invariants enforced:
    - sum(installment.total_amount) == loan total_amount exactly.
    - sum(installment.principal_amount) == loan_amount exactly, so the
      interest portions also sum to the loan's interest.
    - Every installment amount is rounded down to currency precision and
      the rounding remainder lands on the final installment.
"""

from datetime import date
from decimal import ROUND_DOWN, Decimal
from typing import Protocol

from pawn_kernel.db.types import ZERO, round_money
from pawn_kernel.exceptions import InvalidInputError
from pawn_modules.loans.calculator import add_months
from pawn_modules.loans.models import PaymentPlanType, ScheduledInstallment


class ScheduleTerms(Protocol):
    """Loan fields the planner reads.  LoanModel satisfies it."""

    loan_amount: Decimal
    total_amount: Decimal
    start_date: date
    number_of_installments: int | None
    requires_minimum_payment: bool
    payment_plan_type: str


class InstallmentPlanner:
    """
    Splits a loan's total into installments.

    Contract:
        ``generate_schedule`` returns an empty list for loans that need no
        schedule (single-payment plans without a minimum requirement).
    """

    def requires_schedule(self, terms: ScheduleTerms) -> bool:
        return (
            PaymentPlanType(terms.payment_plan_type) == PaymentPlanType.INSTALLMENTS
            or terms.requires_minimum_payment
        )

    def generate_schedule(self, terms: ScheduleTerms) -> list[ScheduledInstallment]:
        """
        Raises:
            InvalidInputError: the plan needs a schedule and
                ``number_of_installments`` is missing or not positive.
        """
        if not self.requires_schedule(terms):
            return []

        count = terms.number_of_installments or 0
        if count <= 0:
            if PaymentPlanType(terms.payment_plan_type) == PaymentPlanType.INSTALLMENTS:
                raise InvalidInputError(
                    "number_of_installments", "must be positive for an installment plan"
                )
            if terms.number_of_installments is not None:
                raise InvalidInputError(
                    "number_of_installments",
                    "must be positive when a minimum payment is required",
                )
            # Minimum-payment loans without a count pay down without a schedule
            return []

        total = terms.total_amount
        principal = terms.loan_amount

        share = round_money(total / count, rounding=ROUND_DOWN)
        totals = [share] * (count - 1)
        totals.append(total - share * (count - 1))

        principals: list[Decimal] = []
        allotted = ZERO
        for i, installment_total in enumerate(totals):
            if i == count - 1:
                portion = principal - allotted
            else:
                portion = round_money(installment_total * principal / total, rounding=ROUND_DOWN)
            principals.append(portion)
            allotted += portion

        return [
            ScheduledInstallment(
                installment_number=i + 1,
                due_date=add_months(terms.start_date, i + 1),
                principal_amount=principals[i],
                interest_amount=totals[i] - principals[i],
                total_amount=totals[i],
            )
            for i in range(count)
        ]
