"""Services for the pawn kernel (write side)."""

from pawn_kernel.services.accounting_poster import AccountingPoster, LineSpec, RoleLine
from pawn_kernel.services.chart_service import ChartOfAccountsService
from pawn_kernel.services.journal_service import JournalService
from pawn_kernel.services.numbering_service import NumberingService
from pawn_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountingPoster",
    "ChartOfAccountsService",
    "JournalService",
    "LineSpec",
    "NumberingService",
    "RoleLine",
    "SequenceService",
]
