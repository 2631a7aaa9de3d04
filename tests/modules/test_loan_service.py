"""
Tests for LoanService: quote, create, approve, overdue assessment,
confiscation, cancellation and the overdue sweep.

All loans start on 2024-01-01 (the deterministic clock) and default to
1000.00 at 10 % for 30 days, so they fall due on 2024-01-31.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from pawn_kernel.domain.collaborators import CreditDelta, ItemStatus
from pawn_kernel.exceptions import (
    CashSessionRequiredError,
    InsufficientCashError,
    InvalidInputError,
    InvalidLoanTransitionError,
    LoanNotFoundError,
    OutOfRangeError,
)
from pawn_kernel.models.accounting_entry import ReferenceType
from pawn_kernel.selectors.ledger_selector import LedgerSelector
from pawn_modules.cash.models import MovementReference, MovementType
from pawn_modules.loans.models import LoanStatus, MakePaymentInput, PaymentMethod, PaymentPlanType

from tests.fakes import OPENING_FLOAT, TEST_CUSTOMER_ID, TEST_ITEM_ID


class TestQuote:

    def test_single_payment_quote(self, loan_service, loan_request):
        quote = loan_service.quote(loan_request())
        assert quote.interest_amount == Decimal("100.00")
        assert quote.total_amount == Decimal("1100.00")
        assert quote.due_date == date(2024, 1, 31)
        assert quote.installments == ()
        assert quote.installment_amount is None

    def test_installment_quote(self, loan_service, loan_request):
        quote = loan_service.quote(
            loan_request(
                payment_plan_type=PaymentPlanType.INSTALLMENTS, number_of_installments=3
            )
        )
        assert quote.interest_amount == Decimal("300.00")
        assert quote.total_amount == Decimal("1300.00")
        assert quote.due_date == date(2024, 4, 1)
        assert quote.loan_term_days == 91
        assert quote.installment_amount == Decimal("433.33")

    def test_quote_writes_nothing(self, session, loan_service, loan_request, collaborators):
        loan_service.quote(loan_request())
        assert collaborators.items.calls == []


class TestCreateLoan:

    def test_active_loan_is_disbursed(
        self, session, loan_service, make_loan, cash_service, cash_session
    ):
        loan = make_loan()

        assert loan.status == LoanStatus.ACTIVE
        assert loan.loan_number == "LN-2024-000001"
        assert loan.principal_remaining == Decimal("1000.00")
        assert loan.interest_remaining == Decimal("100.00")
        assert loan.amount_paid == Decimal("0.00")
        assert loan.start_date == date(2024, 1, 1)
        assert loan.due_date == date(2024, 1, 31)

        movements = cash_service.movements(cash_session.id)
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.EXPENSE
        assert movements[0].reference_type == MovementReference.LOAN
        assert movements[0].reference_id == loan.id
        assert movements[0].balance_after == OPENING_FLOAT - Decimal("1000.00")

        selector = LedgerSelector(session)
        assert selector.balance_by_code("1201") == Decimal("1000.00")
        assert selector.balance_by_code("1101") == Decimal("-1000.00")
        assert len(selector.entries_for_reference(ReferenceType.LOAN, loan.id)) == 1

    def test_collaborators_told_after_commit(self, make_loan, collaborators):
        loan = make_loan()

        assert collaborators.items.calls == [(TEST_ITEM_ID, ItemStatus.COLLATERAL)]
        assert collaborators.customers.calls == [(TEST_CUSTOMER_ID, CreditDelta(total_loans=1))]
        create = collaborators.audit.calls[-1]
        assert create["action"] == "Create"
        assert create["entity_type"] == "loan"
        assert create["entity_id"] == loan.id
        assert create["before"] is None
        assert create["after"]["status"] == "active"

    def test_loan_numbers_are_sequential(self, make_loan):
        assert make_loan().loan_number == "LN-2024-000001"
        assert make_loan().loan_number == "LN-2024-000002"

    def test_cash_disbursement_requires_session(self, session, make_loan, collaborators):
        with pytest.raises(CashSessionRequiredError) as exc_info:
            make_loan(cash_session_id=None)
        assert exc_info.value.operation == "disbursement"
        assert LedgerSelector(session).balance_by_code("1201") == Decimal("0.00")
        assert collaborators.items.calls == []

    def test_transfer_disbursement_settles_through_bank(
        self, session, make_loan, cash_service, cash_session
    ):
        loan = make_loan(cash_session_id=None, disbursement_method=PaymentMethod.TRANSFER)

        assert loan.status == LoanStatus.ACTIVE
        assert cash_service.movements(cash_session.id) == []
        selector = LedgerSelector(session)
        assert selector.balance_by_code("1201") == Decimal("1000.00")
        assert selector.balance_by_code("1102") == Decimal("-1000.00")
        assert selector.balance_by_code("1101") == Decimal("0.00")

    def test_card_disbursement_on_session_keeps_method(
        self, session, make_loan, cash_service, cash_session
    ):
        loan = make_loan(disbursement_method=PaymentMethod.CARD)

        movement = cash_service.movements(cash_session.id)[0]
        assert movement.payment_method == "card"
        assert movement.reference_id == loan.id
        assert LedgerSelector(session).balance_by_code("1102") == Decimal("-1000.00")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"loan_amount": Decimal("0")},
            {"loan_amount": Decimal("-10.00")},
            {"interest_rate": Decimal("-1")},
            {"loan_term_days": 0},
            {"grace_period_days": -1},
            {"payment_plan_type": PaymentPlanType.INSTALLMENTS, "number_of_installments": 0},
        ],
    )
    def test_invalid_terms_rejected(self, make_loan, collaborators, overrides):
        with pytest.raises(InvalidInputError):
            make_loan(**overrides)
        assert collaborators.items.calls == []

    def test_exceeding_item_value_rejected(self, make_loan):
        with pytest.raises(InvalidInputError):
            make_loan(max_loan_value=Decimal("999.99"))

    def test_category_amount_limit(self, make_loan):
        with pytest.raises(OutOfRangeError):
            make_loan(category_code="jewelry", loan_amount=Decimal("20.00"))

    def test_category_term_limit(self, make_loan):
        with pytest.raises(OutOfRangeError):
            make_loan(category_code="electronics", loan_term_days=120)

    def test_disbursement_beyond_float_rolls_back(self, session, make_loan, collaborators):
        with pytest.raises(InsufficientCashError):
            make_loan(loan_amount=Decimal("6000.00"))
        assert LedgerSelector(session).balance_by_code("1201") == Decimal("0.00")
        assert collaborators.items.calls == []

    def test_installment_schedule_persisted(self, loan_service, make_loan):
        loan = make_loan(payment_plan_type=PaymentPlanType.INSTALLMENTS, number_of_installments=3)
        installments = loan_service.installments(loan.id)
        assert [i.installment_number for i in installments] == [1, 2, 3]
        assert sum(i.total_amount for i in installments) == Decimal("1300.00")
        assert all(not i.is_paid for i in installments)


class TestApproval:

    def test_pending_loan_not_disbursed(
        self, session, approval_loan_service, loan_request, cash_service, cash_session
    ):
        loan = approval_loan_service.create_loan(loan_request())
        assert loan.status == LoanStatus.PENDING
        assert cash_service.movements(cash_session.id) == []
        assert LedgerSelector(session).balance_by_code("1201") == Decimal("0.00")

    def test_approve_disburses(
        self, session, approval_loan_service, loan_request, cash_service, cash_session,
        test_actor_id, collaborators,
    ):
        loan = approval_loan_service.create_loan(loan_request())
        approved = approval_loan_service.approve_loan(
            loan.id, test_actor_id, cash_session_id=cash_session.id
        )

        assert approved.status == LoanStatus.ACTIVE
        assert approved.due_date == loan.due_date
        assert len(cash_service.movements(cash_session.id)) == 1
        assert LedgerSelector(session).balance_by_code("1201") == Decimal("1000.00")
        assert collaborators.audit.actions[-1] == "Approve"

    def test_approve_twice_rejected(
        self, approval_loan_service, loan_request, cash_session, test_actor_id
    ):
        loan = approval_loan_service.create_loan(loan_request())
        approval_loan_service.approve_loan(loan.id, test_actor_id, cash_session.id)
        with pytest.raises(InvalidLoanTransitionError):
            approval_loan_service.approve_loan(loan.id, test_actor_id, cash_session.id)

    def test_cash_approval_without_session_rolls_back(
        self, session, approval_loan_service, loan_request, test_actor_id
    ):
        loan = approval_loan_service.create_loan(loan_request())
        with pytest.raises(CashSessionRequiredError):
            approval_loan_service.approve_loan(loan.id, test_actor_id)

        assert approval_loan_service.get_loan(loan.id).status == LoanStatus.PENDING
        assert LedgerSelector(session).trial_balance() == []

    def test_transfer_approval(
        self, session, approval_loan_service, loan_request, test_actor_id
    ):
        loan = approval_loan_service.create_loan(loan_request())
        approved = approval_loan_service.approve_loan(
            loan.id, test_actor_id, disbursement_method=PaymentMethod.TRANSFER
        )

        assert approved.status == LoanStatus.ACTIVE
        assert LedgerSelector(session).balance_by_code("1102") == Decimal("-1000.00")


class TestOverdue:

    def test_not_overdue_on_due_date(self, loan_service, make_loan, deterministic_clock):
        loan = make_loan()
        deterministic_clock.advance_days(30)
        assert loan_service.get_loan(loan.id).status == LoanStatus.ACTIVE

    def test_late_fee_per_day(self, loan_service, make_loan, deterministic_clock):
        loan = make_loan()
        deterministic_clock.advance_days(35)

        current = loan_service.get_loan(loan.id)
        assert current.status == LoanStatus.OVERDUE
        assert current.days_overdue == 5
        assert current.late_fee_amount == Decimal("50.00")
        assert current.late_fee_remaining == Decimal("50.00")

    def test_assessment_is_idempotent(self, loan_service, make_loan, deterministic_clock):
        loan = make_loan()
        deterministic_clock.advance_days(35)
        first = loan_service.get_loan(loan.id)
        second = loan_service.get_loan(loan.id)
        assert first.late_fee_amount == second.late_fee_amount == Decimal("50.00")

    def test_unknown_loan(self, loan_service, seeded_accounts):
        with pytest.raises(LoanNotFoundError):
            loan_service.get_loan(uuid4())

    def test_sweep_counts_status_changes(self, loan_service, make_loan, deterministic_clock):
        make_loan()
        make_loan()
        deterministic_clock.advance_days(31)

        assert loan_service.sweep_overdue() == 2
        assert loan_service.sweep_overdue() == 0

    def test_sweep_filters_by_branch(self, loan_service, make_loan, deterministic_clock):
        make_loan()
        deterministic_clock.advance_days(31)
        assert loan_service.sweep_overdue(branch_id=uuid4()) == 0


class TestConfiscation:

    def test_confiscate_overdue_loan(
        self, session, loan_service, make_loan, deterministic_clock, collaborators,
        test_actor_id,
    ):
        loan = make_loan()
        deterministic_clock.advance_days(31)

        confiscated = loan_service.confiscate_loan(loan.id, test_actor_id, notes="unclaimed")

        assert confiscated.status == LoanStatus.CONFISCATED
        assert confiscated.confiscated_date == date(2024, 2, 1)
        assert collaborators.items.last_status == ItemStatus.CONFISCATED
        assert collaborators.customers.deltas[-1] == CreditDelta(
            total_defaulted=Decimal("1110.00")
        )
        selector = LedgerSelector(session)
        assert selector.balance_by_code("1301") == Decimal("1000.00")
        assert selector.balance_by_code("1201") == Decimal("0.00")

    def test_active_loan_cannot_be_confiscated(self, loan_service, make_loan, test_actor_id):
        loan = make_loan()
        with pytest.raises(InvalidLoanTransitionError):
            loan_service.confiscate_loan(loan.id, test_actor_id)

    def test_grace_period_respected(
        self, loan_service, make_loan, deterministic_clock, test_actor_id
    ):
        loan = make_loan(grace_period_days=10)
        deterministic_clock.advance_days(35)
        with pytest.raises(InvalidLoanTransitionError):
            loan_service.confiscate_loan(loan.id, test_actor_id)

        deterministic_clock.advance_days(5)
        assert loan_service.confiscate_loan(loan.id, test_actor_id).status == (
            LoanStatus.CONFISCATED
        )


class TestCancellation:

    def test_cancel_active_loan_returns_cash(
        self, session, loan_service, make_loan, cash_service, cash_session, collaborators,
        test_actor_id,
    ):
        loan = make_loan()
        cancelled = loan_service.cancel_loan(
            loan.id, test_actor_id, reason="changed mind", cash_session_id=cash_session.id
        )

        assert cancelled.status == LoanStatus.CANCELLED
        assert cancelled.cancelled_date == date(2024, 1, 1)
        movements = cash_service.movements(cash_session.id)
        assert [m.movement_type for m in movements] == [MovementType.EXPENSE, MovementType.INCOME]
        assert movements[-1].balance_after == OPENING_FLOAT

        selector = LedgerSelector(session)
        assert selector.balance_by_code("1201") == Decimal("0.00")
        assert selector.balance_by_code("1101") == Decimal("0.00")

        assert collaborators.items.last_status == ItemStatus.AVAILABLE
        assert collaborators.customers.deltas[-1] == CreditDelta(total_loans=-1)
        assert collaborators.audit.actions[-1] == "Cancel"

    def test_cancel_transfer_loan_returns_nothing_to_register(
        self, session, loan_service, make_loan, cash_service, cash_session, test_actor_id
    ):
        loan = make_loan(cash_session_id=None, disbursement_method=PaymentMethod.TRANSFER)
        cancelled = loan_service.cancel_loan(
            loan.id, test_actor_id, cash_session_id=cash_session.id
        )

        assert cancelled.status == LoanStatus.CANCELLED
        assert cash_service.movements(cash_session.id) == []
        selector = LedgerSelector(session)
        assert selector.balance_by_code("1201") == Decimal("0.00")
        assert selector.balance_by_code("1102") == Decimal("0.00")

    def test_cancel_pending_loan(
        self, session, approval_loan_service, loan_request, test_actor_id
    ):
        loan = approval_loan_service.create_loan(loan_request())
        cancelled = approval_loan_service.cancel_loan(loan.id, test_actor_id)
        assert cancelled.status == LoanStatus.CANCELLED
        assert LedgerSelector(session).trial_balance() == []

    def test_cannot_cancel_after_payment(
        self, loan_service, payment_service, make_loan, cash_session, test_actor_id
    ):
        loan = make_loan()
        payment_service.make_payment(
            MakePaymentInput(loan.id, Decimal("10.00"), test_actor_id,
                             payment_method=PaymentMethod.CARD)
        )
        with pytest.raises(InvalidLoanTransitionError):
            loan_service.cancel_loan(loan.id, test_actor_id)

    def test_cancelled_loan_is_terminal(self, loan_service, make_loan, test_actor_id):
        loan = make_loan()
        loan_service.cancel_loan(loan.id, test_actor_id)
        with pytest.raises(InvalidLoanTransitionError):
            loan_service.cancel_loan(loan.id, test_actor_id)
