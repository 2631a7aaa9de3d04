"""
Unit tests for payment allocation.

Verifies:
- Late fee, then interest, then principal
- Overpayment and non-positive amounts are rejected
- Reversal uses the stored split
- Installment spreading and withdrawal order
"""

from dataclasses import dataclass
from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from pawn_kernel.db.types import ZERO
from pawn_kernel.exceptions import NonPositiveAmountError, OverpaymentError
from pawn_modules.loans.allocator import PaymentAllocator
from pawn_modules.loans.models import LoanBalances


@dataclass
class Slot:
    id: UUID
    installment_number: int
    total_amount: Decimal
    amount_paid: Decimal


@pytest.fixture
def allocator():
    return PaymentAllocator()


@pytest.fixture
def balances():
    return LoanBalances(
        principal_remaining=Decimal("1000.00"),
        interest_remaining=Decimal("100.00"),
        late_fee_remaining=Decimal("20.00"),
    )


class TestAllocate:

    def test_late_fee_first_then_interest(self, allocator, balances):
        result = allocator.allocate(balances, Decimal("50.00"))
        assert result.late_fee == Decimal("20.00")
        assert result.interest == Decimal("30.00")
        assert result.principal == ZERO
        assert not result.fully_paid

    def test_principal_after_charges(self, allocator, balances):
        result = allocator.allocate(balances, Decimal("300.00"))
        assert (result.late_fee, result.interest, result.principal) == (
            Decimal("20.00"), Decimal("100.00"), Decimal("180.00"),
        )
        assert result.total == Decimal("300.00")

    def test_exact_payoff_settles(self, allocator, balances):
        result = allocator.allocate(balances, Decimal("1120.00"))
        assert result.fully_paid
        assert result.principal == Decimal("1000.00")

    def test_overpayment_rejected(self, allocator, balances):
        with pytest.raises(OverpaymentError) as exc_info:
            allocator.allocate(balances, Decimal("1120.01"))
        assert exc_info.value.payoff_amount == "1120.00"

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    def test_non_positive_rejected(self, allocator, balances, amount):
        with pytest.raises(NonPositiveAmountError):
            allocator.allocate(balances, amount)

    def test_payoff_quote(self, allocator, balances):
        assert allocator.payoff_quote(balances) == Decimal("1120.00")


class TestInverse:

    def test_inverse_mirrors_stored_split(self, allocator):
        payment = SimpleNamespace(
            principal_amount=Decimal("180.00"),
            interest_amount=Decimal("100.00"),
            late_fee_amount=Decimal("20.00"),
        )
        result = allocator.inverse(payment)
        assert (result.late_fee, result.interest, result.principal) == (
            Decimal("20.00"), Decimal("100.00"), Decimal("180.00"),
        )
        assert not result.fully_paid


class TestInstallments:

    def _slots(self, *paid):
        return [
            Slot(uuid4(), n + 1, Decimal("100.00"), Decimal(p))
            for n, p in enumerate(paid)
        ]

    def test_spread_in_schedule_order(self, allocator):
        slots = self._slots("100.00", "40.00", "0.00")
        applications = allocator.spread_over_installments(slots, Decimal("90.00"))
        assert [(a.installment_id, a.amount) for a in applications] == [
            (slots[1].id, Decimal("60.00")),
            (slots[2].id, Decimal("30.00")),
        ]

    def test_spread_excess_unapplied(self, allocator):
        slots = self._slots("90.00")
        applications = allocator.spread_over_installments(slots, Decimal("25.00"))
        assert applications[0].amount == Decimal("10.00")
        assert len(applications) == 1

    def test_withdraw_latest_first(self, allocator):
        slots = self._slots("100.00", "100.00", "30.00")
        withdrawals = allocator.withdraw_from_installments(slots, Decimal("80.00"))
        assert [(w.installment_id, w.amount) for w in withdrawals] == [
            (slots[2].id, Decimal("30.00")),
            (slots[1].id, Decimal("50.00")),
        ]
