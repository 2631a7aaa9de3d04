"""
pawn_modules.cash.service
=========================

Responsibility:
    Orchestrates cash-session operations: open, manual movements, close and
    read-side summaries.  Owns the transaction boundary; the arithmetic and
    guards live in CashSessionLedger.

Architecture:
    Module layer (pawn_modules).  Each public mutating method commits or
    rolls back via ``transaction()`` before returning, then writes the audit
    record.

Failure modes:
    - Any ledger error -> session rolled back, exception re-raised.

Usage::

    service = CashService(session, config, clock)
    opened = service.open_session(branch_id, register_id, user_id,
                                  Decimal("500.00"), actor_id=user_id)
    service.close_session(opened.id, Decimal("500.00"), closed_by_id=user_id)
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from pawn_config.schema import LedgerConfig
from pawn_kernel.db.engine import transaction
from pawn_kernel.domain.clock import Clock, SystemClock
from pawn_kernel.domain.collaborators import AuditLogger, LoggingAuditLogger
from pawn_kernel.logging_config import LogContext, get_logger
from pawn_modules.cash.ledger import CashSessionLedger
from pawn_modules.cash.models import (
    CashMovement,
    CashSession,
    MovementReference,
    MovementType,
    SessionSummary,
)

logger = get_logger("modules.cash.service")


def _session_snapshot(dto: CashSession) -> dict:
    return {
        "status": dto.status.value,
        "opening_amount": str(dto.opening_amount),
        "closing_amount": str(dto.closing_amount) if dto.closing_amount is not None else None,
        "expected_amount": str(dto.expected_amount) if dto.expected_amount is not None else None,
        "difference": str(dto.difference) if dto.difference is not None else None,
    }


class CashService:
    """
    Cash session orchestrator.

    Contract:
        Each public method either commits and returns a DTO, or rolls back
        and raises.  Reads do not open a transaction of their own.

    Non-goals:
        - Does NOT post accounting entries.  Movements recorded for loans
          and payments are posted by the loan module alongside them.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
        audit: AuditLogger | None = None,
        ledger: CashSessionLedger | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or LoggingAuditLogger()
        self._ledger = ledger or CashSessionLedger(
            session, allow_negative_cash=config.allow_negative_cash
        )

    # =========================================================================
    # Open / close
    # =========================================================================

    def open_session(
        self,
        branch_id: UUID,
        cash_register_id: UUID,
        user_id: UUID,
        opening_amount: Decimal,
        actor_id: UUID,
        notes: str | None = None,
    ) -> CashSession:
        with LogContext.bind(actor_id=actor_id, branch_id=branch_id):
            with transaction(self._session):
                row = self._ledger.open(
                    branch_id=branch_id,
                    cash_register_id=cash_register_id,
                    user_id=user_id,
                    opening_amount=opening_amount,
                    opened_at=self._clock.now_utc(),
                    actor_id=actor_id,
                    notes=notes,
                )
                opened = row.to_dto()
            self._audit.record(
                "Open", "cash_session", opened.id, None, _session_snapshot(opened), actor_id
            )
            return opened

    def close_session(
        self,
        session_id: UUID,
        closing_amount: Decimal,
        closed_by_id: UUID,
        notes: str | None = None,
    ) -> CashSession:
        """
        Reconcile the counted cash against the journal and close.

        Raises:
            SessionAlreadyClosedError: closed already, including by a
                concurrent close that committed first.
        """
        with LogContext.bind(actor_id=closed_by_id, session_id=session_id):
            with transaction(self._session):
                before = self._ledger.get(session_id).to_dto()
                row = self._ledger.close(
                    session_id=session_id,
                    closing_amount=closing_amount,
                    closed_at=self._clock.now_utc(),
                    closed_by_id=closed_by_id,
                    notes=notes,
                )
                closed = row.to_dto()
            self._audit.record(
                "Close",
                "cash_session",
                closed.id,
                _session_snapshot(before),
                _session_snapshot(closed),
                closed_by_id,
            )
            return closed

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
        reference_type: MovementReference | None = MovementReference.MANUAL,
        reference_id: UUID | None = None,
    ) -> CashMovement:
        """Record a stand-alone movement (sale, expense, manual adjustment)."""
        with LogContext.bind(actor_id=actor_id, session_id=session_id):
            with transaction(self._session):
                movement = self._ledger.record_movement(
                    session_id=session_id,
                    movement_type=movement_type,
                    amount=amount,
                    payment_method=payment_method,
                    description=description,
                    actor_id=actor_id,
                    reference_type=reference_type,
                    reference_id=reference_id,
                )
                return movement.to_dto()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_session(self, session_id: UUID) -> CashSession:
        return self._ledger.get(session_id).to_dto()

    def current_session(self, user_id: UUID) -> CashSession | None:
        row = self._ledger.current_session(user_id)
        return row.to_dto() if row is not None else None

    def movements(self, session_id: UUID) -> list[CashMovement]:
        self._ledger.get(session_id)
        return [m.to_dto() for m in self._ledger.movements(session_id)]

    def summary(self, session_id: UUID) -> SessionSummary:
        return self._ledger.summary(session_id)
