"""
Module: pawn_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- account balance, trial balance
    and entry lookup by business reference.  Balances are derived from posted
    AccountingEntryLine rows at query time; nothing is stored.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only entries with is_posted = true contribute to any balance.
    - Balance sign convention is debit minus credit for every account type.

Failure modes:
    - Returns zero balances when no posted lines exist.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Numeric, case, func, select, type_coerce

from pawn_kernel.db.types import ZERO, round_money
from pawn_kernel.models.account import Account
from pawn_kernel.models.accounting_entry import (
    AccountingEntry,
    AccountingEntryLine,
    EntryType,
    ReferenceType,
)
from pawn_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountBalance:
    """Debit and credit totals for one account."""

    account_id: UUID
    debit_total: Decimal
    credit_total: Decimal
    line_count: int

    @property
    def balance(self) -> Decimal:
        """Net balance (debits - credits)."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class TrialBalanceRow:
    """A single row in a trial balance report."""

    account_id: UUID
    account_code: str
    account_name: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def balance(self) -> Decimal:
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class EntryLineDTO:
    account_id: UUID
    entry_type: EntryType
    amount: Decimal
    line_seq: int


@dataclass(frozen=True)
class EntryDTO:
    """Read model of one accounting entry and its lines."""

    id: UUID
    entry_number: str
    entry_date: date
    branch_id: UUID
    description: str
    reference_type: ReferenceType | None
    reference_id: UUID | None
    total_debit: Decimal
    total_credit: Decimal
    is_posted: bool
    reversal_of_id: UUID | None
    lines: tuple[EntryLineDTO, ...]


def _summed(side: EntryType):
    return type_coerce(
        func.coalesce(
            func.sum(
                case(
                    (AccountingEntryLine.entry_type == side, AccountingEntryLine.amount),
                    else_=ZERO,
                )
            ),
            ZERO,
        ),
        Numeric(14, 2),
    )


class LedgerSelector(BaseSelector):
    """
    Selector for balances over posted accounting entries.

    Contract:
        Every query joins AccountingEntry and filters ``is_posted``; an
        ``as_of`` cut-off applies to ``entry_date`` inclusively.
    """

    def account_balance(
        self,
        account_id: UUID,
        as_of: date | None = None,
        branch_id: UUID | None = None,
    ) -> AccountBalance:
        query = (
            select(
                _summed(EntryType.DEBIT).label("debit_total"),
                _summed(EntryType.CREDIT).label("credit_total"),
                func.count(AccountingEntryLine.id).label("line_count"),
            )
            .join(AccountingEntry, AccountingEntryLine.entry_id == AccountingEntry.id)
            .where(
                AccountingEntry.is_posted.is_(True),
                AccountingEntryLine.account_id == account_id,
            )
        )
        if as_of is not None:
            query = query.where(AccountingEntry.entry_date <= as_of)
        if branch_id is not None:
            query = query.where(AccountingEntry.branch_id == branch_id)

        row = self.session.execute(query).one()
        return AccountBalance(
            account_id=account_id,
            debit_total=round_money(Decimal(row.debit_total or 0)),
            credit_total=round_money(Decimal(row.credit_total or 0)),
            line_count=row.line_count,
        )

    def get_account_balance(
        self,
        account_id: UUID,
        as_of: date | None = None,
        branch_id: UUID | None = None,
    ) -> Decimal:
        """Sum of debit minus credit over posted entries dated on or before ``as_of``."""
        return self.account_balance(account_id, as_of, branch_id).balance

    def balance_by_code(
        self,
        code: str,
        as_of: date | None = None,
        branch_id: UUID | None = None,
    ) -> Decimal:
        account_id = self.session.execute(
            select(Account.id).where(Account.code == code)
        ).scalar_one_or_none()
        if account_id is None:
            return ZERO
        return self.get_account_balance(account_id, as_of, branch_id)

    def trial_balance(
        self,
        as_of: date | None = None,
        branch_id: UUID | None = None,
    ) -> list[TrialBalanceRow]:
        """
        One row per account with posted activity, ordered by account code.

        The sum of every row's debit_total equals the sum of every
        credit_total because each posted entry is balanced.
        """
        query = (
            select(
                AccountingEntryLine.account_id,
                Account.code.label("account_code"),
                Account.name.label("account_name"),
                _summed(EntryType.DEBIT).label("debit_total"),
                _summed(EntryType.CREDIT).label("credit_total"),
            )
            .join(AccountingEntry, AccountingEntryLine.entry_id == AccountingEntry.id)
            .join(Account, AccountingEntryLine.account_id == Account.id)
            .where(AccountingEntry.is_posted.is_(True))
            .group_by(AccountingEntryLine.account_id, Account.code, Account.name)
            .order_by(Account.code)
        )
        if as_of is not None:
            query = query.where(AccountingEntry.entry_date <= as_of)
        if branch_id is not None:
            query = query.where(AccountingEntry.branch_id == branch_id)

        return [
            TrialBalanceRow(
                account_id=row.account_id,
                account_code=row.account_code,
                account_name=row.account_name,
                debit_total=round_money(Decimal(row.debit_total or 0)),
                credit_total=round_money(Decimal(row.credit_total or 0)),
            )
            for row in self.session.execute(query).all()
        ]

    def entries_for_reference(
        self,
        reference_type: ReferenceType,
        reference_id: UUID,
    ) -> list[EntryDTO]:
        """Entries written for one business document, oldest number first."""
        entries = self.session.execute(
            select(AccountingEntry)
            .where(
                AccountingEntry.reference_type == reference_type.value,
                AccountingEntry.reference_id == reference_id,
            )
            .order_by(AccountingEntry.entry_number)
        ).scalars().all()
        return [self._to_dto(e) for e in entries]

    def get_entry(self, entry_id: UUID) -> EntryDTO | None:
        entry = self.session.get(AccountingEntry, entry_id)
        return self._to_dto(entry) if entry is not None else None

    @staticmethod
    def _to_dto(entry: AccountingEntry) -> EntryDTO:
        return EntryDTO(
            id=entry.id,
            entry_number=entry.entry_number,
            entry_date=entry.entry_date,
            branch_id=entry.branch_id,
            description=entry.description,
            reference_type=(
                ReferenceType(entry.reference_type) if entry.reference_type else None
            ),
            reference_id=entry.reference_id,
            total_debit=entry.total_debit,
            total_credit=entry.total_credit,
            is_posted=entry.is_posted,
            reversal_of_id=entry.reversal_of_id,
            lines=tuple(
                EntryLineDTO(
                    account_id=line.account_id,
                    entry_type=EntryType(line.entry_type),
                    amount=line.amount,
                    line_seq=line.line_seq,
                )
                for line in entry.lines
            ),
        )
