"""
Tests for loan renewal.

A renewal closes the loan as ``renewed`` and opens a successor.  Charges
are either collected as a companion payment or capitalised into the new
principal.
"""

from datetime import date
from decimal import Decimal

import pytest

from pawn_kernel.domain.collaborators import CreditDelta, ItemStatus
from pawn_kernel.exceptions import (
    CashSessionRequiredError,
    InvalidInputError,
    InvalidLoanTransitionError,
    IrreversibleLoanStateError,
)
from pawn_kernel.selectors.ledger_selector import LedgerSelector
from pawn_modules.cash.models import MovementReference, MovementType
from pawn_modules.loans.models import (
    LoanStatus,
    MakePaymentInput,
    PaymentMethod,
    PaymentPlanType,
    RenewLoanInput,
    ReversePaymentInput,
)


def _renew(loan_service, loan, actor_id, pay_interest=False, **kwargs):
    return loan_service.renew_loan(
        RenewLoanInput(
            loan_id=loan.id,
            new_term_days=kwargs.pop("new_term_days", 30),
            pay_interest=pay_interest,
            actor_id=actor_id,
            **kwargs,
        )
    )


class TestCapitalisedRenewal:

    def test_charges_roll_into_new_principal(
        self, session, loan_service, make_loan, deterministic_clock, collaborators,
        test_actor_id,
    ):
        loan = make_loan()
        deterministic_clock.advance_days(10)

        result = _renew(loan_service, loan, test_actor_id)

        assert result.previous_loan.status == LoanStatus.RENEWED
        assert result.interest_payment is None
        assert result.capitalised_amount == Decimal("100.00")

        new = result.new_loan
        assert new.status == LoanStatus.ACTIVE
        assert new.loan_number == "LN-2024-000002"
        assert new.renewed_from_id == loan.id
        assert new.renewal_count == 1
        assert new.loan_amount == Decimal("1100.00")
        assert new.interest_amount == Decimal("110.00")
        assert new.total_amount == Decimal("1210.00")
        assert new.start_date == date(2024, 1, 11)
        assert new.due_date == date(2024, 2, 10)
        assert new.item_id == loan.item_id

        selector = LedgerSelector(session)
        assert selector.balance_by_code("1201") == Decimal("1100.00")
        assert selector.balance_by_code("4101") == Decimal("-100.00")

        record = collaborators.audit.calls[-1]
        assert record["action"] == "Renew"
        assert record["after"]["renewed_to"] == str(new.id)
        assert record["after"]["new_loan_number"] == new.loan_number
        assert collaborators.items.calls == [(loan.item_id, ItemStatus.COLLATERAL)]

    def test_overdue_late_fee_capitalised(
        self, session, loan_service, make_loan, deterministic_clock, test_actor_id
    ):
        loan = make_loan()
        deterministic_clock.advance_days(33)

        result = _renew(loan_service, loan, test_actor_id)

        assert result.capitalised_amount == Decimal("130.00")
        assert result.new_loan.loan_amount == Decimal("1130.00")
        assert result.new_loan.interest_amount == Decimal("113.00")
        assert LedgerSelector(session).balance_by_code("4102") == Decimal("-30.00")

    def test_new_interest_rate(self, loan_service, make_loan, test_actor_id):
        loan = make_loan()
        result = _renew(loan_service, loan, test_actor_id, new_interest_rate=Decimal("5"))
        assert result.new_loan.interest_amount == Decimal("55.00")

    def test_installment_plan_renews_as_single(self, loan_service, make_loan, test_actor_id):
        loan = make_loan(
            payment_plan_type=PaymentPlanType.INSTALLMENTS, number_of_installments=3
        )
        result = _renew(loan_service, loan, test_actor_id)

        assert result.new_loan.payment_plan_type == PaymentPlanType.SINGLE
        assert result.new_loan.number_of_installments is None
        assert loan_service.installments(result.new_loan.id) == []


class TestInterestPaidRenewal:

    def test_companion_payment_taken(
        self, loan_service, make_loan, cash_service, cash_session, deterministic_clock,
        collaborators, test_actor_id,
    ):
        loan = make_loan()
        deterministic_clock.advance_days(10)

        result = _renew(
            loan_service, loan, test_actor_id, pay_interest=True,
            cash_session_id=cash_session.id,
        )

        assert result.capitalised_amount == Decimal("0.00")
        assert result.interest_payment.amount == Decimal("100.00")
        assert result.interest_payment.interest_amount == Decimal("100.00")
        assert result.interest_payment.loan_id == loan.id
        assert result.new_loan.loan_amount == Decimal("1000.00")
        assert result.new_loan.interest_amount == Decimal("100.00")

        movement = cash_service.movements(cash_session.id)[-1]
        assert movement.movement_type == MovementType.INCOME
        assert movement.reference_type == MovementReference.PAYMENT
        assert collaborators.customers.deltas[-1] == CreditDelta(total_paid=Decimal("100.00"))

    def test_late_fee_collected_with_interest(
        self, loan_service, make_loan, deterministic_clock, test_actor_id
    ):
        loan = make_loan()
        deterministic_clock.advance_days(33)

        result = _renew(
            loan_service, loan, test_actor_id, pay_interest=True,
            payment_method=PaymentMethod.CARD,
        )

        assert result.interest_payment.amount == Decimal("130.00")
        assert result.interest_payment.late_fee_amount == Decimal("30.00")
        assert result.new_loan.loan_amount == Decimal("1000.00")
        assert result.new_loan.due_date == date(2024, 3, 4)

    def test_cash_without_session_rolls_back(self, loan_service, make_loan, test_actor_id):
        loan = make_loan()
        with pytest.raises(CashSessionRequiredError):
            _renew(loan_service, loan, test_actor_id, pay_interest=True)
        assert loan_service.get_loan(loan.id).status == LoanStatus.ACTIVE


class TestRenewalGuards:

    def test_paid_loan_cannot_be_renewed(
        self, loan_service, payment_service, make_loan, test_actor_id
    ):
        loan = make_loan()
        payment_service.make_payment(
            MakePaymentInput(loan.id, Decimal("1100.00"), test_actor_id,
                             payment_method=PaymentMethod.CARD)
        )
        with pytest.raises(InvalidLoanTransitionError):
            _renew(loan_service, loan, test_actor_id)

    def test_renewed_loan_is_terminal(self, loan_service, make_loan, test_actor_id):
        loan = make_loan()
        _renew(loan_service, loan, test_actor_id)
        with pytest.raises(InvalidLoanTransitionError):
            _renew(loan_service, loan, test_actor_id)

    def test_non_positive_term_rejected(self, loan_service, make_loan, test_actor_id):
        loan = make_loan()
        with pytest.raises(InvalidInputError):
            _renew(loan_service, loan, test_actor_id, new_term_days=0)
        assert loan_service.get_loan(loan.id).status == LoanStatus.ACTIVE

    def test_payment_on_renewed_loan_irreversible(
        self, loan_service, payment_service, make_loan, test_actor_id
    ):
        loan = make_loan()
        payment = payment_service.make_payment(
            MakePaymentInput(loan.id, Decimal("50.00"), test_actor_id,
                             payment_method=PaymentMethod.CARD)
        )
        _renew(loan_service, loan, test_actor_id)
        with pytest.raises(IrreversibleLoanStateError):
            payment_service.reverse_payment(
                ReversePaymentInput(payment.id, "wrong loan", test_actor_id)
            )

    def test_successor_cannot_be_cancelled(
        self, session, loan_service, make_loan, cash_service, cash_session, collaborators,
        test_actor_id,
    ):
        loan = make_loan()
        successor = _renew(loan_service, loan, test_actor_id).new_loan
        audit_before = list(collaborators.audit.actions)

        with pytest.raises(InvalidLoanTransitionError):
            loan_service.cancel_loan(
                successor.id, test_actor_id, cash_session_id=cash_session.id
            )

        assert loan_service.get_loan(successor.id).status == LoanStatus.ACTIVE
        assert LedgerSelector(session).balance_by_code("1201") == Decimal("1100.00")
        movements = cash_service.movements(cash_session.id)
        assert [m.reference_type for m in movements] == [MovementReference.LOAN]
        assert movements[-1].reference_id == loan.id
        assert collaborators.audit.actions == audit_before
