"""
JournalService -- transaction owner for manual accounting operations.

Responsibility:
    Public entry point for posting an ad-hoc balanced entry and for reversing
    an existing entry.  Ledger events (loans, payments, confiscations) are
    posted by the module orchestrators inside their own transactions; this
    service covers the remaining manual adjustments.

Architecture position:
    Kernel > Services -- orchestrator.  Owns commit/rollback via
    ``transaction()``; delegates validation and writes to AccountingPoster.

Failure modes:
    Every AccountingPoster error propagates after rollback.  Nothing is
    written on failure.
"""

from datetime import date
from typing import Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from pawn_kernel.db.engine import transaction
from pawn_kernel.domain.clock import Clock, SystemClock
from pawn_kernel.domain.collaborators import AuditLogger, LoggingAuditLogger
from pawn_kernel.logging_config import LogContext, get_logger
from pawn_kernel.models.accounting_entry import AccountingEntry, ReferenceType
from pawn_kernel.services.accounting_poster import AccountingPoster, LineSpec

logger = get_logger("services.journal")


def _entry_snapshot(entry: AccountingEntry) -> dict:
    return {
        "entry_number": entry.entry_number,
        "entry_date": entry.entry_date.isoformat(),
        "total_debit": str(entry.total_debit),
        "total_credit": str(entry.total_credit),
        "reference_type": entry.reference_type,
        "reference_id": str(entry.reference_id) if entry.reference_id else None,
        "reversal_of_id": str(entry.reversal_of_id) if entry.reversal_of_id else None,
    }


class JournalService:
    """
    Posts and reverses accounting entries, one transaction per call.

    Contract:
        Each public method either commits and returns the new entry, or
        rolls back and raises.  The audit record is written after commit.
    """

    def __init__(
        self,
        session: Session,
        poster: AccountingPoster,
        clock: Clock | None = None,
        audit: AuditLogger | None = None,
    ):
        self._session = session
        self._poster = poster
        self._clock = clock or SystemClock()
        self._audit = audit or LoggingAuditLogger()

    def post(
        self,
        branch_id: UUID,
        lines: Sequence[LineSpec],
        description: str,
        actor_id: UUID,
        entry_date: date | None = None,
        reference_type: ReferenceType | None = ReferenceType.MANUAL,
        reference_id: UUID | None = None,
    ) -> AccountingEntry:
        with LogContext.bind(actor_id=str(actor_id), branch_id=str(branch_id)):
            with transaction(self._session):
                entry = self._poster.post(
                    branch_id=branch_id,
                    entry_date=entry_date or self._clock.today(),
                    lines=lines,
                    description=description,
                    actor_id=actor_id,
                    reference_type=reference_type,
                    reference_id=reference_id,
                )
            self._audit.record(
                "Post", "accounting_entry", entry.id, None, _entry_snapshot(entry), actor_id
            )
            return entry

    def reverse(
        self,
        entry_id: UUID,
        reason: str,
        actor_id: UUID,
        entry_date: date | None = None,
    ) -> AccountingEntry:
        """Write the reversing entry of ``entry_id``; the original is unchanged."""
        with LogContext.bind(actor_id=str(actor_id), entry_id=str(entry_id)):
            with transaction(self._session):
                reversal = self._poster.reverse_entry(
                    entry_id=entry_id,
                    reason=reason,
                    actor_id=actor_id,
                    entry_date=entry_date,
                )
            self._audit.record(
                "Reverse",
                "accounting_entry",
                reversal.id,
                None,
                _entry_snapshot(reversal),
                actor_id,
            )
            return reversal
