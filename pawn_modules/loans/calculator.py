"""
pawn_modules.loans.calculator
=============================

Responsibility:
    Pure functions for loan arithmetic: interest at issuance, due dates,
    overdue assessment with late-fee accrual, and minimum-payment quotes.

Architecture:
    Module layer, functional core.  No I/O, no session, no clock: the
    caller passes ``as_of`` explicitly.

Invariants enforced:
    - Rates are percentages (``12`` means 12 %).
    - Every returned amount is rounded once, through ``round_money``.
    - The late fee is derived from ``days_overdue`` and never accumulated,
      so assessing the same loan twice at the same ``as_of`` gives the same
      fee.  The fee never drops below the part of it already paid.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from pawn_kernel.db.types import ZERO, percent_of, round_money
from pawn_modules.loans.models import (
    OPEN_LOAN_STATUSES,
    LoanBalances,
    LoanStatus,
    OverdueAssessment,
    PaymentPlanType,
)


def compute_interest(
    loan_amount: Decimal,
    interest_rate: Decimal,
    plan_type: PaymentPlanType = PaymentPlanType.SINGLE,
    number_of_installments: int | None = None,
) -> Decimal:
    """
    Interest charged at issuance.

    Flat-period plans charge ``loan_amount * rate / 100`` once.  Installment
    plans charge the same flat interest for every installment period.
    """
    per_period = round_money(percent_of(loan_amount, interest_rate))
    if plan_type == PaymentPlanType.INSTALLMENTS and number_of_installments:
        return round_money(per_period * number_of_installments)
    return per_period


def add_months(start: date, months: int) -> date:
    """``start`` moved by whole months, clamped to the last day of the month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_due_date(
    start_date: date,
    loan_term_days: int,
    plan_type: PaymentPlanType = PaymentPlanType.SINGLE,
    number_of_installments: int | None = None,
) -> date:
    # Installment loans fall due with their last installment
    if plan_type == PaymentPlanType.INSTALLMENTS and number_of_installments:
        return add_months(start_date, number_of_installments)
    return start_date + timedelta(days=loan_term_days)


def compute_late_fee(
    late_fee_rate: Decimal,
    principal_remaining: Decimal,
    days_overdue: int,
    late_fee_period_days: int = 1,
) -> Decimal:
    """
    Late fee for the whole overdue period.

    ``late_fee_rate`` percent of the remaining principal, once per whole
    elapsed period of ``late_fee_period_days``.
    """
    if days_overdue <= 0 or late_fee_rate <= ZERO:
        return ZERO
    periods = days_overdue // late_fee_period_days
    return round_money(percent_of(principal_remaining, late_fee_rate) * periods)


@dataclass(frozen=True)
class OverdueState:
    """The loan fields an overdue assessment reads."""

    status: LoanStatus
    due_date: date
    principal_remaining: Decimal
    interest_remaining: Decimal
    late_fee_rate: Decimal
    late_fee_amount: Decimal
    late_fee_remaining: Decimal
    days_overdue: int = 0


def assess_overdue(
    state: OverdueState,
    as_of: date,
    late_fee_period_days: int = 1,
) -> OverdueAssessment:
    """
    Re-derive status, days overdue and late fee of a loan at ``as_of``.

    Only active and overdue loans are assessed; any other status is
    returned unchanged.  A loan is overdue when ``as_of`` is past its due
    date and it is not fully settled.
    """
    status = LoanStatus(state.status)
    if status not in OPEN_LOAN_STATUSES:
        return OverdueAssessment(
            status=status,
            days_overdue=state.days_overdue,
            late_fee_amount=state.late_fee_amount,
            late_fee_remaining=state.late_fee_remaining,
        )

    fee_paid = state.late_fee_amount - state.late_fee_remaining
    outstanding = state.principal_remaining + state.interest_remaining + state.late_fee_remaining

    if as_of > state.due_date and outstanding > ZERO:
        days_overdue = (as_of - state.due_date).days
        new_status = LoanStatus.OVERDUE
    else:
        days_overdue = 0
        new_status = LoanStatus.ACTIVE

    fee = compute_late_fee(
        state.late_fee_rate, state.principal_remaining, days_overdue, late_fee_period_days
    )
    fee = max(fee, fee_paid)

    return OverdueAssessment(
        status=new_status,
        days_overdue=days_overdue,
        late_fee_amount=fee,
        late_fee_remaining=fee - fee_paid,
    )


def confiscation_date(due_date: date, grace_period_days: int) -> date:
    """First day on which an overdue loan may be confiscated."""
    return due_date + timedelta(days=grace_period_days)


def minimum_payment_due(
    balances: LoanBalances,
    requires_minimum_payment: bool,
    minimum_payment_amount: Decimal | None,
) -> Decimal:
    """
    Smallest payment that keeps the loan current.

    Loans without a minimum-payment requirement must be paid off in full.
    Otherwise the configured minimum, capped at the outstanding principal
    and interest, plus any outstanding late fee.
    """
    if not requires_minimum_payment or minimum_payment_amount is None:
        return balances.payoff
    base = min(
        minimum_payment_amount,
        balances.principal_remaining + balances.interest_remaining,
    )
    return round_money(base + balances.late_fee_remaining)
