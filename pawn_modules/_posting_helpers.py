"""
Shared helpers for module posting flows.

Used by pawn_modules/*/service.py to build the accounting poster from the
active configuration and to render audit snapshots of loans.

Architecture: Modules layer. Imports only from pawn_kernel and pawn_config.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from pawn_config.schema import LedgerConfig
from pawn_kernel.domain.clock import Clock
from pawn_kernel.services.accounting_poster import AccountingPoster
from pawn_kernel.services.numbering_service import NumberingService


def build_poster(
    session: Session,
    config: LedgerConfig,
    clock: Clock,
    numbering: NumberingService | None = None,
) -> AccountingPoster:
    """AccountingPoster wired to the configured posting roles and switch."""
    return AccountingPoster(
        session,
        config.account_roles,
        clock=clock,
        numbering=numbering,
        enabled=config.post_accounting_entries,
    )


def loan_snapshot(loan: Any) -> dict[str, Any]:
    """Audit view of a loan row or DTO: status and the remaining buckets."""
    status = getattr(loan.status, "value", loan.status)
    return {
        "loan_number": loan.loan_number,
        "status": status,
        "principal_remaining": str(loan.principal_remaining),
        "interest_remaining": str(loan.interest_remaining),
        "late_fee_remaining": str(loan.late_fee_remaining),
        "amount_paid": str(loan.amount_paid),
        "days_overdue": loan.days_overdue,
    }
