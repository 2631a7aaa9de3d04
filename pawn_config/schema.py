"""
LedgerConfig schema.

Typed, frozen representation of the ledger configuration.  YAML files are
parsed into these types by ``pawn_config.loader``; services receive a
``LedgerConfig`` through their constructor and never read files or
environment variables themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from pawn_kernel.models.account import AccountRole


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountDef:
    """One account of the seeded chart of accounts."""

    code: str
    name: str
    account_type: str  # asset, liability, equity, income, expense
    parent_code: str | None = None


# ---------------------------------------------------------------------------
# Loan limits
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryLimits:
    """
    Loan amount and term limits for one item category.

    ``None`` on either side of a range means unbounded on that side.
    """

    category_code: str
    min_loan_amount: Decimal | None = None
    max_loan_amount: Decimal | None = None
    min_term_days: int | None = None
    max_term_days: int | None = None

    def __post_init__(self) -> None:
        if (
            self.min_loan_amount is not None
            and self.max_loan_amount is not None
            and self.min_loan_amount > self.max_loan_amount
        ):
            raise ValueError(
                f"Category {self.category_code}: min_loan_amount exceeds max_loan_amount"
            )
        if (
            self.min_term_days is not None
            and self.max_term_days is not None
            and self.min_term_days > self.max_term_days
        ):
            raise ValueError(
                f"Category {self.category_code}: min_term_days exceeds max_term_days"
            )


# ---------------------------------------------------------------------------
# Ledger configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """
    Complete runtime configuration of the ledger.

    Contract:
        ``__post_init__`` validates all constraints and raises ``ValueError``
        on violation.  Every AccountRole must be mapped to a code present in
        the chart of accounts.

    Fields:
        late_fee_period_days: length of one overdue period; the late fee is
            charged once per whole elapsed period.
        default_grace_period_days: grace window past due date before an
            overdue loan may be confiscated, when the loan does not set one.
        require_loan_approval: new loans start ``pending`` instead of
            ``active`` and are disbursed on approval.
        post_accounting_entries: write accounting entries for ledger events.
        allow_negative_cash: permit cash expenses beyond the session balance.
    """

    name: str = "default"
    currency: str = "USD"
    late_fee_period_days: int = 1
    default_grace_period_days: int = 0
    require_loan_approval: bool = False
    post_accounting_entries: bool = True
    allow_negative_cash: bool = False
    account_roles: dict[AccountRole, str] = field(default_factory=dict)
    chart_of_accounts: tuple[AccountDef, ...] = ()
    category_limits: dict[str, CategoryLimits] = field(default_factory=dict)
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.late_fee_period_days <= 0:
            raise ValueError("late_fee_period_days must be positive")
        if self.default_grace_period_days < 0:
            raise ValueError("default_grace_period_days must be non-negative")
        if len(self.currency) != 3:
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")

        codes = {a.code for a in self.chart_of_accounts}
        if self.post_accounting_entries:
            missing = [r.value for r in AccountRole if r not in self.account_roles]
            if missing:
                raise ValueError(f"Unmapped account roles: {', '.join(missing)}")
            if codes:
                unknown = sorted(
                    code for code in self.account_roles.values() if code not in codes
                )
                if unknown:
                    raise ValueError(
                        f"Account roles reference unknown codes: {', '.join(unknown)}"
                    )

    def account_code(self, role: AccountRole) -> str:
        """Chart-of-accounts code for a posting role."""
        return self.account_roles[role]

    def limits_for(self, category_code: str | None) -> CategoryLimits | None:
        if category_code is None:
            return None
        return self.category_limits.get(category_code)
