"""
Unit tests for loan arithmetic: interest, due dates, late fees, overdue
assessment and minimum payments.
"""

from datetime import date
from decimal import Decimal

from pawn_kernel.db.types import ZERO
from pawn_modules.loans.calculator import (
    OverdueState,
    add_months,
    assess_overdue,
    compute_due_date,
    compute_interest,
    compute_late_fee,
    confiscation_date,
    minimum_payment_due,
)
from pawn_modules.loans.models import LoanBalances, LoanStatus, PaymentPlanType


def _state(**overrides) -> OverdueState:
    values = dict(
        status=LoanStatus.ACTIVE,
        due_date=date(2024, 1, 31),
        principal_remaining=Decimal("1000.00"),
        interest_remaining=Decimal("100.00"),
        late_fee_rate=Decimal("1.0000"),
        late_fee_amount=ZERO,
        late_fee_remaining=ZERO,
        days_overdue=0,
    )
    values.update(overrides)
    return OverdueState(**values)


class TestInterest:

    def test_single_payment_flat(self):
        assert compute_interest(Decimal("1000.00"), Decimal("10")) == Decimal("100.00")

    def test_installments_charge_every_period(self):
        interest = compute_interest(
            Decimal("1000.00"), Decimal("10"), PaymentPlanType.INSTALLMENTS, 3
        )
        assert interest == Decimal("300.00")

    def test_minimum_payment_plan_is_flat(self):
        interest = compute_interest(
            Decimal("1000.00"), Decimal("10"), PaymentPlanType.MINIMUM_PAYMENT, 6
        )
        assert interest == Decimal("100.00")

    def test_rounded_half_up(self):
        assert compute_interest(Decimal("333.33"), Decimal("1.5")) == Decimal("5.00")

    def test_zero_rate(self):
        assert compute_interest(Decimal("500.00"), Decimal("0")) == ZERO


class TestDueDates:

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_add_months_crosses_year(self):
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_single_due_after_term(self):
        assert compute_due_date(date(2024, 1, 1), 30) == date(2024, 1, 31)

    def test_installments_due_with_last_installment(self):
        due = compute_due_date(date(2024, 1, 1), 30, PaymentPlanType.INSTALLMENTS, 3)
        assert due == date(2024, 4, 1)

    def test_confiscation_date(self):
        assert confiscation_date(date(2024, 1, 31), 10) == date(2024, 2, 10)
        assert confiscation_date(date(2024, 1, 31), 0) == date(2024, 1, 31)


class TestLateFee:

    def test_daily_period(self):
        fee = compute_late_fee(Decimal("1"), Decimal("1000.00"), 5)
        assert fee == Decimal("50.00")

    def test_only_whole_periods_count(self):
        fee = compute_late_fee(Decimal("1"), Decimal("1000.00"), 13, late_fee_period_days=7)
        assert fee == Decimal("10.00")

    def test_not_overdue_no_fee(self):
        assert compute_late_fee(Decimal("1"), Decimal("1000.00"), 0) == ZERO

    def test_zero_rate_no_fee(self):
        assert compute_late_fee(Decimal("0"), Decimal("1000.00"), 30) == ZERO


class TestAssessOverdue:

    def test_before_due_date_is_active(self):
        result = assess_overdue(_state(), date(2024, 1, 31))
        assert result.status == LoanStatus.ACTIVE
        assert result.days_overdue == 0
        assert result.late_fee_amount == ZERO

    def test_past_due_becomes_overdue_with_fee(self):
        result = assess_overdue(_state(), date(2024, 2, 3))
        assert result.status == LoanStatus.OVERDUE
        assert result.days_overdue == 3
        assert result.late_fee_amount == Decimal("30.00")
        assert result.late_fee_remaining == Decimal("30.00")

    def test_idempotent_at_same_date(self):
        first = assess_overdue(_state(), date(2024, 2, 3))
        again = assess_overdue(
            _state(
                status=first.status,
                late_fee_amount=first.late_fee_amount,
                late_fee_remaining=first.late_fee_remaining,
                days_overdue=first.days_overdue,
            ),
            date(2024, 2, 3),
        )
        assert again == first

    def test_fee_never_drops_below_paid_portion(self):
        # 30.00 accrued and paid; principal since reduced so the formula gives less
        state = _state(
            status=LoanStatus.OVERDUE,
            principal_remaining=Decimal("500.00"),
            late_fee_amount=Decimal("30.00"),
            late_fee_remaining=ZERO,
            days_overdue=3,
        )
        result = assess_overdue(state, date(2024, 2, 4))
        assert result.late_fee_amount == Decimal("30.00")
        assert result.late_fee_remaining == ZERO

    def test_fee_grows_beyond_paid_portion(self):
        state = _state(
            status=LoanStatus.OVERDUE,
            late_fee_amount=Decimal("30.00"),
            late_fee_remaining=ZERO,
            days_overdue=3,
        )
        result = assess_overdue(state, date(2024, 2, 5))
        assert result.late_fee_amount == Decimal("50.00")
        assert result.late_fee_remaining == Decimal("20.00")

    def test_terminal_status_unchanged(self):
        state = _state(status=LoanStatus.CONFISCATED, days_overdue=12)
        result = assess_overdue(state, date(2024, 6, 1))
        assert result.status == LoanStatus.CONFISCATED
        assert result.days_overdue == 12

    def test_settled_loan_not_overdue(self):
        state = _state(principal_remaining=ZERO, interest_remaining=ZERO)
        result = assess_overdue(state, date(2024, 3, 1))
        assert result.status == LoanStatus.ACTIVE


class TestMinimumPayment:

    def test_without_requirement_is_payoff(self):
        balances = LoanBalances(Decimal("1000.00"), Decimal("100.00"), Decimal("5.00"))
        assert minimum_payment_due(balances, False, None) == Decimal("1105.00")

    def test_minimum_plus_late_fee(self):
        balances = LoanBalances(Decimal("1000.00"), Decimal("100.00"), Decimal("5.00"))
        assert minimum_payment_due(balances, True, Decimal("150.00")) == Decimal("155.00")

    def test_minimum_capped_at_outstanding(self):
        balances = LoanBalances(Decimal("40.00"), Decimal("10.00"), ZERO)
        assert minimum_payment_due(balances, True, Decimal("150.00")) == Decimal("50.00")
