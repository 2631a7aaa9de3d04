"""
AccountingPoster -- balanced, immediately-posted double-entry entries.

Responsibility:
    Validates and writes accounting entries (header + lines) for every
    ledger event: loan disbursement, payment, payment reversal (refund),
    confiscation, renewal capitalisation and cancellation.  Also creates
    reversing entries, the only sanctioned way to correct a posted entry.

Architecture position:
    Kernel > Services -- flush-only.  Called by the loan and cash module
    services inside their transaction.  Posting roles are resolved to
    account codes through the injected mapping, never hard-coded.

Invariants enforced:
    - At least two lines, each with a strictly positive amount.
    - sum(debit) == sum(credit); the header totals equal both sums.
    - Every referenced account exists and is active.
    - Entries are written with is_posted = true.  There is no draft state.
    - An entry is reversed at most once (checked here and by a unique
      constraint on reversal_of_id).

Failure modes:
    - InvalidInputError for fewer than two lines, a non-positive amount or
      an unknown side.
    - UnbalancedEntryError (an InvalidInputError) when debits != credits.
    - AccountNotFoundError / InactiveAccountError for bad accounts.
    - AccountingEntryNotFoundError / EntryAlreadyReversedError on reversal.

Audit relevance:
    Each posted entry is logged with its number, totals and reference.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from pawn_kernel.db.types import ZERO, to_money
from pawn_kernel.domain.clock import Clock, SystemClock
from pawn_kernel.exceptions import (
    AccountingEntryNotFoundError,
    AccountNotFoundError,
    EntryAlreadyReversedError,
    InactiveAccountError,
    InvalidInputError,
    UnbalancedEntryError,
)
from pawn_kernel.logging_config import get_logger
from pawn_kernel.models.account import Account, AccountRole
from pawn_kernel.models.accounting_entry import (
    AccountingEntry,
    AccountingEntryLine,
    EntryType,
    ReferenceType,
)
from pawn_kernel.services.base import BaseService
from pawn_kernel.services.numbering_service import NumberingService

logger = get_logger("services.accounting_poster")

CASH_METHOD = "cash"


def settlement_role(payment_method: str) -> AccountRole:
    """Cash settles through the till; every other method through the bank."""
    return AccountRole.CASH if payment_method == CASH_METHOD else AccountRole.BANK


@dataclass(frozen=True)
class LineSpec:
    """One requested line of an entry, addressed by account id."""

    account_id: UUID
    entry_type: EntryType
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class RoleLine:
    """One requested line addressed by posting role."""

    role: AccountRole
    entry_type: EntryType
    amount: Decimal
    description: str | None = None


class AccountingPoster(BaseService):
    """
    Writes balanced accounting entries in the caller's transaction.

    Contract:
        ``post`` is the single write path.  The event helpers
        (``post_loan_disbursement`` and friends) build role lines and
        delegate to it.  When posting is disabled by configuration the
        helpers return ``None`` and write nothing; ``post`` itself always
        writes.

    Non-goals:
        - Does NOT commit.
        - Does NOT compute balances; see LedgerSelector.
    """

    def __init__(
        self,
        session: Session,
        account_roles: Mapping[AccountRole, str],
        clock: Clock | None = None,
        numbering: NumberingService | None = None,
        enabled: bool = True,
    ):
        super().__init__(session)
        self._account_roles = dict(account_roles)
        self._clock = clock or SystemClock()
        self._numbering = numbering or NumberingService(session)
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    # =========================================================================
    # Core posting
    # =========================================================================

    def post(
        self,
        branch_id: UUID,
        entry_date: date,
        lines: Sequence[LineSpec],
        description: str,
        actor_id: UUID,
        reference_type: ReferenceType | None = None,
        reference_id: UUID | None = None,
        reversal_of_id: UUID | None = None,
    ) -> AccountingEntry:
        """
        Validate and write one posted entry.

        Preconditions:
            - Called inside an open transaction.
        Postconditions:
            - One AccountingEntry with len(lines) AccountingEntryLines is
              flushed, ``is_posted`` true, totals equal to the line sums.
        Raises:
            InvalidInputError, UnbalancedEntryError, AccountNotFoundError,
            InactiveAccountError.
        """
        if len(lines) < 2:
            raise InvalidInputError("lines", "an accounting entry needs at least two lines")

        normalized: list[tuple[UUID, EntryType, Decimal, str | None]] = []
        for line in lines:
            try:
                side = EntryType(line.entry_type)
            except ValueError:
                raise InvalidInputError("entry_type", f"unknown side {line.entry_type!r}")
            amount = to_money(line.amount)
            if amount <= ZERO:
                raise InvalidInputError("amount", f"line amount must be positive, got {amount}")
            normalized.append((line.account_id, side, amount, line.description))

        self._check_accounts({account_id for account_id, _, _, _ in normalized})

        debits = sum((a for _, s, a, _ in normalized if s == EntryType.DEBIT), ZERO)
        credits = sum((a for _, s, a, _ in normalized if s == EntryType.CREDIT), ZERO)
        if debits != credits:
            logger.warning(
                "entry_rejected_unbalanced",
                extra={"debits": str(debits), "credits": str(credits)},
            )
            raise UnbalancedEntryError(debits, credits)

        entry = AccountingEntry(
            entry_number=self._numbering.next_entry_number(entry_date),
            branch_id=branch_id,
            entry_date=entry_date,
            description=description,
            reference_type=reference_type.value if reference_type else None,
            reference_id=reference_id,
            total_debit=debits,
            total_credit=credits,
            is_posted=True,
            posted_at=self._clock.now_utc(),
            posted_by_id=actor_id,
            reversal_of_id=reversal_of_id,
            created_by_id=actor_id,
        )
        for seq, (account_id, side, amount, line_description) in enumerate(normalized, start=1):
            entry.lines.append(
                AccountingEntryLine(
                    account_id=account_id,
                    entry_type=side.value,
                    amount=amount,
                    description=line_description,
                    line_seq=seq,
                    created_by_id=actor_id,
                )
            )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "entry_posted",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "total": str(debits),
                "line_count": len(normalized),
                "reference_type": reference_type.value if reference_type else None,
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        return entry

    def _check_accounts(self, account_ids: set[UUID]) -> None:
        accounts = {
            a.id: a
            for a in self.session.execute(
                select(Account).where(Account.id.in_(account_ids))
            ).scalars()
        }
        for account_id in account_ids:
            account = accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(str(account_id))
            if not account.is_active:
                raise InactiveAccountError(str(account_id))

    def resolve_account(self, role: AccountRole) -> Account:
        """Account configured for ``role``."""
        code = self._account_roles.get(role)
        if code is None:
            raise InvalidInputError("role", f"no account configured for role '{role.value}'")
        account = self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def post_by_role(
        self,
        branch_id: UUID,
        entry_date: date,
        lines: Sequence[RoleLine],
        description: str,
        actor_id: UUID,
        reference_type: ReferenceType | None = None,
        reference_id: UUID | None = None,
    ) -> AccountingEntry | None:
        """
        Post role-addressed lines, dropping zero-amount lines.

        Returns None (and writes nothing) when posting is disabled or no
        non-zero line remains.
        """
        if not self._enabled:
            return None
        kept = [l for l in lines if to_money(l.amount) != ZERO]
        if not kept:
            return None
        specs = [
            LineSpec(
                account_id=self.resolve_account(l.role).id,
                entry_type=l.entry_type,
                amount=l.amount,
                description=l.description,
            )
            for l in kept
        ]
        return self.post(
            branch_id=branch_id,
            entry_date=entry_date,
            lines=specs,
            description=description,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
        )

    # =========================================================================
    # Event templates
    # =========================================================================

    def post_loan_disbursement(
        self,
        branch_id: UUID,
        loan_id: UUID,
        loan_number: str,
        amount: Decimal,
        entry_date: date,
        actor_id: UUID,
        payment_method: str = CASH_METHOD,
    ) -> AccountingEntry | None:
        """Dr Loans Receivable / Cr Cash (or Bank) for the principal handed over."""
        return self.post_by_role(
            branch_id=branch_id,
            entry_date=entry_date,
            lines=[
                RoleLine(AccountRole.LOANS_RECEIVABLE, EntryType.DEBIT, amount, "Loan principal"),
                RoleLine(settlement_role(payment_method), EntryType.CREDIT, amount,
                         "Principal disbursed"),
            ],
            description=f"Loan disbursement {loan_number}",
            actor_id=actor_id,
            reference_type=ReferenceType.LOAN,
            reference_id=loan_id,
        )

    def post_loan_payment(
        self,
        branch_id: UUID,
        payment_id: UUID,
        payment_number: str,
        principal: Decimal,
        interest: Decimal,
        late_fee: Decimal,
        entry_date: date,
        actor_id: UUID,
        payment_method: str = CASH_METHOD,
    ) -> AccountingEntry | None:
        """Dr Cash (or Bank) / Cr Loans Receivable, Interest Income, Late Fee Income."""
        total = to_money(principal) + to_money(interest) + to_money(late_fee)
        return self.post_by_role(
            branch_id=branch_id,
            entry_date=entry_date,
            lines=[
                RoleLine(settlement_role(payment_method), EntryType.DEBIT, total,
                         "Payment received"),
                RoleLine(AccountRole.LOANS_RECEIVABLE, EntryType.CREDIT, principal, "Principal"),
                RoleLine(AccountRole.INTEREST_INCOME, EntryType.CREDIT, interest, "Interest"),
                RoleLine(AccountRole.LATE_FEE_INCOME, EntryType.CREDIT, late_fee, "Late fee"),
            ],
            description=f"Loan payment {payment_number}",
            actor_id=actor_id,
            reference_type=ReferenceType.PAYMENT,
            reference_id=payment_id,
        )

    def post_payment_reversal(
        self,
        original_entry_id: UUID | None,
        payment_id: UUID,
        payment_number: str,
        reason: str,
        entry_date: date,
        actor_id: UUID,
    ) -> AccountingEntry | None:
        """Refund: reverse the entry the payment posted, if it posted one."""
        if not self._enabled or original_entry_id is None:
            return None
        return self.reverse_entry(
            entry_id=original_entry_id,
            reason=f"payment {payment_number} reversed: {reason}",
            actor_id=actor_id,
            entry_date=entry_date,
            reference_type=ReferenceType.PAYMENT_REVERSAL,
            reference_id=payment_id,
        )

    def post_confiscation(
        self,
        branch_id: UUID,
        loan_id: UUID,
        loan_number: str,
        principal_remaining: Decimal,
        entry_date: date,
        actor_id: UUID,
    ) -> AccountingEntry | None:
        """Dr Collateral Inventory / Cr Loans Receivable for unpaid principal."""
        return self.post_by_role(
            branch_id=branch_id,
            entry_date=entry_date,
            lines=[
                RoleLine(AccountRole.COLLATERAL_INVENTORY, EntryType.DEBIT, principal_remaining,
                         "Collateral taken into inventory"),
                RoleLine(AccountRole.LOANS_RECEIVABLE, EntryType.CREDIT, principal_remaining,
                         "Principal written off"),
            ],
            description=f"Confiscation of loan {loan_number}",
            actor_id=actor_id,
            reference_type=ReferenceType.CONFISCATION,
            reference_id=loan_id,
        )

    def post_renewal_capitalisation(
        self,
        branch_id: UUID,
        loan_id: UUID,
        loan_number: str,
        interest: Decimal,
        late_fee: Decimal,
        entry_date: date,
        actor_id: UUID,
    ) -> AccountingEntry | None:
        """Dr Loans Receivable / Cr income for charges rolled into a renewed loan."""
        total = to_money(interest) + to_money(late_fee)
        return self.post_by_role(
            branch_id=branch_id,
            entry_date=entry_date,
            lines=[
                RoleLine(AccountRole.LOANS_RECEIVABLE, EntryType.DEBIT, total, "Charges capitalised"),
                RoleLine(AccountRole.INTEREST_INCOME, EntryType.CREDIT, interest, "Interest"),
                RoleLine(AccountRole.LATE_FEE_INCOME, EntryType.CREDIT, late_fee, "Late fee"),
            ],
            description=f"Renewal capitalisation {loan_number}",
            actor_id=actor_id,
            reference_type=ReferenceType.RENEWAL,
            reference_id=loan_id,
        )

    def post_loan_cancellation(
        self,
        loan_id: UUID,
        loan_number: str,
        reason: str | None,
        entry_date: date,
        actor_id: UUID,
    ) -> AccountingEntry | None:
        """Reverse the disbursement of a cancelled loan, if one was posted."""
        if not self._enabled:
            return None
        disbursement = self.session.execute(
            select(AccountingEntry).where(
                AccountingEntry.reference_type == ReferenceType.LOAN.value,
                AccountingEntry.reference_id == loan_id,
                AccountingEntry.reversal_of_id.is_(None),
            )
        ).scalar_one_or_none()
        if disbursement is None:
            return None
        return self.reverse_entry(
            entry_id=disbursement.id,
            reason=f"loan {loan_number} cancelled" + (f": {reason}" if reason else ""),
            actor_id=actor_id,
            entry_date=entry_date,
            reference_type=ReferenceType.LOAN_CANCELLATION,
            reference_id=loan_id,
        )

    # =========================================================================
    # Reversal
    # =========================================================================

    def reversal_of(self, entry_id: UUID) -> AccountingEntry | None:
        """The entry that reverses ``entry_id``, if any."""
        return self.session.execute(
            select(AccountingEntry).where(AccountingEntry.reversal_of_id == entry_id)
        ).scalar_one_or_none()

    def reverse_entry(
        self,
        entry_id: UUID,
        reason: str,
        actor_id: UUID,
        entry_date: date | None = None,
        reference_type: ReferenceType = ReferenceType.ENTRY_REVERSAL,
        reference_id: UUID | None = None,
    ) -> AccountingEntry:
        """
        Post a new entry with every line of ``entry_id`` on the opposite side.

        The original entry is left untouched.

        Raises:
            AccountingEntryNotFoundError: entry does not exist.
            EntryAlreadyReversedError: entry already has a reversing entry.
        """
        original = self.session.execute(
            select(AccountingEntry)
            .where(AccountingEntry.id == entry_id)
            .with_for_update()
        ).scalar_one_or_none()
        if original is None:
            raise AccountingEntryNotFoundError(str(entry_id))

        existing = self.reversal_of(entry_id)
        if existing is not None:
            raise EntryAlreadyReversedError(str(entry_id), str(existing.id))

        flipped = [
            LineSpec(
                account_id=line.account_id,
                entry_type=(
                    EntryType.CREDIT
                    if EntryType(line.entry_type) == EntryType.DEBIT
                    else EntryType.DEBIT
                ),
                amount=line.amount,
                description=line.description,
            )
            for line in original.lines
        ]
        reversal = self.post(
            branch_id=original.branch_id,
            entry_date=entry_date or self._clock.today(),
            lines=flipped,
            description=f"Reversal of {original.entry_number}: {reason}",
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id if reference_id is not None else original.id,
            reversal_of_id=original.id,
        )
        logger.info(
            "entry_reversed",
            extra={
                "entry_id": str(original.id),
                "reversal_entry_id": str(reversal.id),
            },
        )
        return reversal
