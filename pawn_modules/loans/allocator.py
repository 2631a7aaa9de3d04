"""
pawn_modules.loans.allocator
============================

Responsibility:
    Splits an incoming payment across a loan's late fee, interest and
    principal, and spreads the scheduled part of a payment over unpaid
    installments.  Also produces the exact inverse of a stored split for
    reversals.

Architecture:
    Module layer, functional core.  Operates on value objects only; the
    loan ledger applies the results to ORM rows.

Invariants enforced:
    - Fixed priority: late fee, then interest, then principal, each capped
      at its remaining bucket.
    - No overpayment: an amount above the payoff is rejected, never
      partially applied or refunded.
    - A reversal uses the split stored on the payment, never a recomputed
      one.

Failure modes:
    - NonPositiveAmountError for zero or negative amounts.
    - OverpaymentError when the amount exceeds the payoff.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, Sequence
from uuid import UUID

from pawn_kernel.db.types import ZERO, to_money
from pawn_kernel.exceptions import NonPositiveAmountError, OverpaymentError
from pawn_modules.loans.models import AllocationResult, LoanBalances


class StoredSplit(Protocol):
    """Payment fields a reversal reads."""

    principal_amount: Decimal
    interest_amount: Decimal
    late_fee_amount: Decimal


class InstallmentBalance(Protocol):
    id: UUID
    installment_number: int
    total_amount: Decimal
    amount_paid: Decimal


@dataclass(frozen=True)
class InstallmentApplication:
    """Amount moved onto (or off) one installment."""

    installment_id: UUID
    amount: Decimal


class PaymentAllocator:
    """Stateless payment splitting."""

    def payoff_quote(self, balances: LoanBalances) -> Decimal:
        """Sum of the three remaining buckets."""
        return balances.payoff

    def allocate(self, balances: LoanBalances, amount: Decimal) -> AllocationResult:
        """
        Split ``amount`` across the buckets of ``balances``.

        Raises:
            NonPositiveAmountError: amount <= 0.
            OverpaymentError: amount > payoff.
        """
        amount = to_money(amount)
        if amount <= ZERO:
            raise NonPositiveAmountError(amount)

        payoff = self.payoff_quote(balances)
        if amount > payoff:
            raise OverpaymentError(amount, payoff)

        remaining = amount
        late_fee = min(remaining, balances.late_fee_remaining)
        remaining -= late_fee
        interest = min(remaining, balances.interest_remaining)
        remaining -= interest
        principal = min(remaining, balances.principal_remaining)

        fully_paid = (
            balances.late_fee_remaining - late_fee == ZERO
            and balances.interest_remaining - interest == ZERO
            and balances.principal_remaining - principal == ZERO
        )
        return AllocationResult(
            late_fee=late_fee,
            interest=interest,
            principal=principal,
            fully_paid=fully_paid,
        )

    def inverse(self, payment: StoredSplit) -> AllocationResult:
        """The split to add back when ``payment`` is reversed."""
        return AllocationResult(
            late_fee=payment.late_fee_amount,
            interest=payment.interest_amount,
            principal=payment.principal_amount,
            fully_paid=False,
        )

    def spread_over_installments(
        self,
        installments: Sequence[InstallmentBalance],
        amount: Decimal,
    ) -> list[InstallmentApplication]:
        """
        Apply ``amount`` to unpaid installments in schedule order.

        Anything left after the last installment is full stays unapplied.
        """
        remaining = to_money(amount)
        applications: list[InstallmentApplication] = []
        for installment in sorted(installments, key=lambda i: i.installment_number):
            if remaining <= ZERO:
                break
            open_amount = installment.total_amount - installment.amount_paid
            if open_amount <= ZERO:
                continue
            applied = min(remaining, open_amount)
            applications.append(InstallmentApplication(installment.id, applied))
            remaining -= applied
        return applications

    def withdraw_from_installments(
        self,
        installments: Sequence[InstallmentBalance],
        amount: Decimal,
    ) -> list[InstallmentApplication]:
        """Remove ``amount`` from installments, latest paid first."""
        remaining = to_money(amount)
        withdrawals: list[InstallmentApplication] = []
        for installment in sorted(
            installments, key=lambda i: i.installment_number, reverse=True
        ):
            if remaining <= ZERO:
                break
            if installment.amount_paid <= ZERO:
                continue
            taken = min(remaining, installment.amount_paid)
            withdrawals.append(InstallmentApplication(installment.id, taken))
            remaining -= taken
        return withdrawals
