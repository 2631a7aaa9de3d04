"""
Unit tests for the installment planner.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from pawn_kernel.exceptions import InvalidInputError
from pawn_modules.loans.planner import InstallmentPlanner


@dataclass
class Terms:
    loan_amount: Decimal
    total_amount: Decimal
    start_date: date
    number_of_installments: int | None
    requires_minimum_payment: bool
    payment_plan_type: str


def _terms(**overrides) -> Terms:
    values = dict(
        loan_amount=Decimal("1000.00"),
        total_amount=Decimal("1300.00"),
        start_date=date(2024, 1, 1),
        number_of_installments=3,
        requires_minimum_payment=False,
        payment_plan_type="installments",
    )
    values.update(overrides)
    return Terms(**values)


@pytest.fixture
def planner():
    return InstallmentPlanner()


class TestGenerateSchedule:

    def test_single_plan_has_no_schedule(self, planner):
        terms = _terms(payment_plan_type="single", number_of_installments=None)
        assert planner.generate_schedule(terms) == []

    def test_even_split_remainder_on_last(self, planner):
        schedule = planner.generate_schedule(_terms())
        assert [i.total_amount for i in schedule] == [
            Decimal("433.33"), Decimal("433.33"), Decimal("433.34"),
        ]
        assert sum(i.total_amount for i in schedule) == Decimal("1300.00")

    def test_principal_sums_to_loan_amount(self, planner):
        schedule = planner.generate_schedule(_terms())
        assert [i.principal_amount for i in schedule] == [
            Decimal("333.33"), Decimal("333.33"), Decimal("333.34"),
        ]
        assert sum(i.principal_amount for i in schedule) == Decimal("1000.00")
        for installment in schedule:
            assert installment.principal_amount + installment.interest_amount == (
                installment.total_amount
            )

    def test_monthly_due_dates(self, planner):
        schedule = planner.generate_schedule(_terms(start_date=date(2024, 1, 31)))
        assert [i.due_date for i in schedule] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30),
        ]
        assert [i.installment_number for i in schedule] == [1, 2, 3]

    def test_installments_need_positive_count(self, planner):
        with pytest.raises(InvalidInputError):
            planner.generate_schedule(_terms(number_of_installments=0))
        with pytest.raises(InvalidInputError):
            planner.generate_schedule(_terms(number_of_installments=None))

    def test_minimum_payment_without_count_has_no_schedule(self, planner):
        terms = _terms(
            payment_plan_type="minimum_payment",
            requires_minimum_payment=True,
            number_of_installments=None,
        )
        assert planner.generate_schedule(terms) == []

    def test_minimum_payment_with_zero_count_rejected(self, planner):
        terms = _terms(
            payment_plan_type="minimum_payment",
            requires_minimum_payment=True,
            number_of_installments=0,
        )
        with pytest.raises(InvalidInputError):
            planner.generate_schedule(terms)

    def test_single_installment_takes_everything(self, planner):
        schedule = planner.generate_schedule(_terms(number_of_installments=1))
        assert len(schedule) == 1
        assert schedule[0].total_amount == Decimal("1300.00")
        assert schedule[0].principal_amount == Decimal("1000.00")
