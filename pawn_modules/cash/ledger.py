"""
CashSessionLedger -- register sessions and their running-balance journal.

Responsibility:
    Opens and closes cash sessions, appends income/expense movements with a
    running ``balance_after``, and reconciles the counted closing amount
    against the journal.

Architecture position:
    Module layer -- flush-only component service.  CashService, LoanService
    and PaymentService own the transaction.

Invariants enforced:
    - One open session per register and one per user (partial unique
      indexes; the application pre-check only produces a nicer error).
    - balance_after = previous balance +/- amount, where the previous
      balance is the opening amount or the last movement's balance_after.
    - Movements are append-only and are only recorded on open sessions.
    - A session closes exactly once: the close is a single conditional
      UPDATE guarded by ``status = 'open'``.

Failure modes:
    - CashSessionNotFoundError for unknown ids.
    - SessionAlreadyOpenError on a second open for a register or user.
    - SessionNotOpenError when recording on a closed session.
    - SessionAlreadyClosedError when the close guard matches no row.
    - NonPositiveAmountError / InsufficientCashError for bad amounts.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pawn_kernel.db.types import ZERO, to_money
from pawn_kernel.exceptions import (
    CashSessionNotFoundError,
    InsufficientCashError,
    InvalidAmountError,
    NonPositiveAmountError,
    SessionAlreadyClosedError,
    SessionAlreadyOpenError,
    SessionNotOpenError,
)
from pawn_kernel.logging_config import get_logger
from pawn_kernel.services.accounting_poster import CASH_METHOD
from pawn_kernel.services.base import BaseService
from pawn_modules.cash.models import (
    CashSessionStatus,
    MovementReference,
    MovementType,
    SessionSummary,
)
from pawn_modules.cash.orm import CashMovementModel, CashSessionModel

logger = get_logger("modules.cash.ledger")


class CashSessionLedger(BaseService):
    """
    Flush-only cash session persistence.

    Contract:
        ``record_movement`` and ``close`` lock the session row, so movements
        and the close of one session are serialized.
    """

    def __init__(self, session: Session, allow_negative_cash: bool = False):
        super().__init__(session)
        self._allow_negative_cash = allow_negative_cash

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, session_id: UUID) -> CashSessionModel:
        row = self.session.get(CashSessionModel, session_id)
        if row is None:
            raise CashSessionNotFoundError(str(session_id))
        return row

    def lock(self, session_id: UUID) -> CashSessionModel:
        row = self.session.execute(
            select(CashSessionModel)
            .where(CashSessionModel.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise CashSessionNotFoundError(str(session_id))
        return row

    def _open_for(self, column, value: UUID) -> CashSessionModel | None:
        return self.session.execute(
            select(CashSessionModel).where(
                column == value,
                CashSessionModel.status == CashSessionStatus.OPEN.value,
            )
        ).scalar_one_or_none()

    def current_session(self, user_id: UUID) -> CashSessionModel | None:
        """The user's open session, if any."""
        return self._open_for(CashSessionModel.user_id, user_id)

    def open_session_for_register(self, cash_register_id: UUID) -> CashSessionModel | None:
        return self._open_for(CashSessionModel.cash_register_id, cash_register_id)

    def movements(self, session_id: UUID) -> list[CashMovementModel]:
        return list(
            self.session.execute(
                select(CashMovementModel)
                .where(CashMovementModel.session_id == session_id)
                .order_by(CashMovementModel.movement_seq)
            ).scalars()
        )

    def movements_for_reference(
        self, reference_type: MovementReference, reference_id: UUID
    ) -> list[CashMovementModel]:
        """Movements across all sessions that point at one business record."""
        return list(
            self.session.execute(
                select(CashMovementModel)
                .where(
                    CashMovementModel.reference_type == reference_type.value,
                    CashMovementModel.reference_id == reference_id,
                )
                .order_by(CashMovementModel.created_at, CashMovementModel.movement_seq)
            ).scalars()
        )

    def _last_movement(self, session_id: UUID) -> CashMovementModel | None:
        return self.session.execute(
            select(CashMovementModel)
            .where(CashMovementModel.session_id == session_id)
            .order_by(CashMovementModel.movement_seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def current_balance(self, row: CashSessionModel) -> Decimal:
        last = self._last_movement(row.id)
        return last.balance_after if last is not None else row.opening_amount

    def net_movements(self, session_id: UUID) -> Decimal:
        """Income minus expense over the whole journal."""
        movements = self.movements(session_id)
        income = sum(
            (m.amount for m in movements if m.movement_type == MovementType.INCOME.value),
            ZERO,
        )
        expense = sum(
            (m.amount for m in movements if m.movement_type == MovementType.EXPENSE.value),
            ZERO,
        )
        return income - expense

    def summary(self, session_id: UUID) -> SessionSummary:
        row = self.get(session_id)
        movements = self.movements(session_id)

        total_income = total_expense = cash_income = cash_expense = ZERO
        by_method: dict[str, Decimal] = {}
        for m in movements:
            signed = m.amount if m.movement_type == MovementType.INCOME.value else -m.amount
            by_method[m.payment_method] = by_method.get(m.payment_method, ZERO) + signed
            if m.movement_type == MovementType.INCOME.value:
                total_income += m.amount
                if m.payment_method == CASH_METHOD:
                    cash_income += m.amount
            else:
                total_expense += m.amount
                if m.payment_method == CASH_METHOD:
                    cash_expense += m.amount

        return SessionSummary(
            session=row.to_dto(),
            total_income=total_income,
            total_expense=total_expense,
            cash_income=cash_income,
            cash_expense=cash_expense,
            by_method=by_method,
            movement_count=len(movements),
            current_balance=movements[-1].balance_after if movements else row.opening_amount,
        )

    # =========================================================================
    # Open
    # =========================================================================

    def open(
        self,
        branch_id: UUID,
        cash_register_id: UUID,
        user_id: UUID,
        opening_amount: Decimal,
        opened_at: datetime,
        actor_id: UUID,
        notes: str | None = None,
    ) -> CashSessionModel:
        """
        Raises:
            InvalidAmountError: negative opening amount.
            SessionAlreadyOpenError: register or user already has an open
                session (pre-check or the partial unique index).
        """
        opening = to_money(opening_amount)
        if opening < ZERO:
            raise InvalidAmountError(opening, "opening amount must not be negative")

        if self.open_session_for_register(cash_register_id) is not None:
            raise SessionAlreadyOpenError(cash_register_id=str(cash_register_id))
        if self.current_session(user_id) is not None:
            raise SessionAlreadyOpenError(user_id=str(user_id))

        row = CashSessionModel(
            branch_id=branch_id,
            cash_register_id=cash_register_id,
            user_id=user_id,
            opening_amount=opening,
            status=CashSessionStatus.OPEN.value,
            opened_at=opened_at,
            opening_notes=notes,
            created_by_id=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(row)
                self.session.flush()
        except IntegrityError:
            # A concurrent open won the race on the partial unique index
            logger.warning(
                "cash_session_open_conflict",
                extra={"cash_register_id": str(cash_register_id), "user_id": str(user_id)},
            )
            raise SessionAlreadyOpenError(
                cash_register_id=str(cash_register_id), user_id=str(user_id)
            )

        logger.info(
            "cash_session_opened",
            extra={
                "session_id": str(row.id),
                "cash_register_id": str(cash_register_id),
                "opening_amount": str(opening),
            },
        )
        return row

    # =========================================================================
    # Movements
    # =========================================================================

    def record_movement(
        self,
        session_id: UUID,
        movement_type: MovementType,
        amount: Decimal,
        payment_method: str,
        description: str,
        actor_id: UUID,
        reference_type: MovementReference | None = None,
        reference_id: UUID | None = None,
    ) -> CashMovementModel:
        """
        Append one movement to an open session.

        Raises:
            SessionNotOpenError, NonPositiveAmountError, InsufficientCashError.
        """
        row = self.lock(session_id)
        if row.status != CashSessionStatus.OPEN.value:
            raise SessionNotOpenError(str(session_id), row.status)

        amount = to_money(amount)
        if amount <= ZERO:
            raise NonPositiveAmountError(amount)

        movement_type = MovementType(movement_type)
        method = getattr(payment_method, "value", payment_method)
        last = self._last_movement(session_id)
        prior = last.balance_after if last is not None else row.opening_amount

        if movement_type == MovementType.INCOME:
            balance_after = prior + amount
        else:
            balance_after = prior - amount
            if (
                method == CASH_METHOD
                and balance_after < ZERO
                and not self._allow_negative_cash
            ):
                raise InsufficientCashError(amount, prior)

        movement = CashMovementModel(
            branch_id=row.branch_id,
            session_id=row.id,
            movement_seq=(last.movement_seq + 1) if last is not None else 1,
            movement_type=movement_type.value,
            amount=amount,
            payment_method=method,
            reference_type=reference_type.value if reference_type else None,
            reference_id=reference_id,
            description=description,
            balance_after=balance_after,
            created_by_id=actor_id,
        )
        self.session.add(movement)
        self.session.flush()

        logger.info(
            "cash_movement_recorded",
            extra={
                "session_id": str(row.id),
                "movement_type": movement_type.value,
                "amount": str(amount),
                "balance_after": str(balance_after),
                "reference_type": movement.reference_type,
            },
        )
        return movement

    # =========================================================================
    # Close
    # =========================================================================

    def close(
        self,
        session_id: UUID,
        closing_amount: Decimal,
        closed_at: datetime,
        closed_by_id: UUID,
        notes: str | None = None,
    ) -> CashSessionModel:
        """
        Reconcile and close.

        expected_amount = opening_amount + net(all movements);
        difference = closing_amount - expected_amount.

        Raises:
            InvalidAmountError: negative closing amount.
            SessionAlreadyClosedError: the session is no longer open.
        """
        closing = to_money(closing_amount)
        if closing < ZERO:
            raise InvalidAmountError(closing, "closing amount must not be negative")

        row = self.lock(session_id)
        if row.status != CashSessionStatus.OPEN.value:
            raise SessionAlreadyClosedError(str(session_id))

        expected = row.opening_amount + self.net_movements(session_id)
        difference = closing - expected

        result = self.session.execute(
            update(CashSessionModel)
            .where(
                CashSessionModel.id == session_id,
                CashSessionModel.status == CashSessionStatus.OPEN.value,
            )
            .values(
                status=CashSessionStatus.CLOSED.value,
                closing_amount=closing,
                expected_amount=expected,
                difference=difference,
                closed_at=closed_at,
                closed_by_id=closed_by_id,
                closing_notes=notes,
                updated_by_id=closed_by_id,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise SessionAlreadyClosedError(str(session_id))

        self.session.refresh(row)
        logger.info(
            "cash_session_closed",
            extra={
                "session_id": str(row.id),
                "expected_amount": str(expected),
                "closing_amount": str(closing),
                "difference": str(difference),
            },
        )
        return row
