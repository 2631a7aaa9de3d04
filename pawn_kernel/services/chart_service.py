"""
ChartOfAccountsService -- seeds and maintains the chart of accounts.

Responsibility:
    Creates the configured accounts (parents before children), marks the
    accounts bound to posting roles as system accounts, and deactivates
    accounts that should no longer receive postings.

Architecture position:
    Kernel > Services -- flush-only.  Account definitions are duck-typed
    (``code``, ``name``, ``account_type``, ``parent_code``) so the kernel
    does not import the configuration package.

Invariants enforced:
    - Seeding is idempotent: an existing code is left as it is.
    - System accounts cannot be deactivated.

Failure modes:
    - InvalidInputError for an unknown account type or parent code.
    - AccountNotFoundError on deactivate of an unknown code.
"""

from typing import Iterable, Protocol
from uuid import UUID

from sqlalchemy import select

from pawn_kernel.exceptions import AccountNotFoundError, InvalidInputError
from pawn_kernel.logging_config import get_logger
from pawn_kernel.models.account import Account, AccountType
from pawn_kernel.services.base import BaseService

logger = get_logger("services.chart")


class AccountDefinition(Protocol):
    code: str
    name: str
    account_type: str
    parent_code: str | None


class ChartOfAccountsService(BaseService):
    """Flush-only chart of accounts maintenance."""

    def get_by_code(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def seed(
        self,
        definitions: Iterable[AccountDefinition],
        actor_id: UUID,
        system_codes: Iterable[str] = (),
    ) -> list[Account]:
        """
        Create every missing account.  Returns the accounts created.

        Parents must appear before their children in ``definitions``.
        """
        system = set(system_codes)
        created: list[Account] = []
        for definition in definitions:
            if self.get_by_code(definition.code) is not None:
                continue
            try:
                account_type = AccountType(definition.account_type)
            except ValueError:
                raise InvalidInputError(
                    "account_type", f"unknown account type {definition.account_type!r}"
                )

            parent_id = None
            if definition.parent_code:
                parent = self.get_by_code(definition.parent_code)
                if parent is None:
                    raise InvalidInputError(
                        "parent_code",
                        f"parent {definition.parent_code} of {definition.code} not found",
                    )
                parent_id = parent.id

            account = Account(
                code=definition.code,
                name=definition.name,
                account_type=account_type.value,
                parent_id=parent_id,
                is_active=True,
                is_system=definition.code in system,
                created_by_id=actor_id,
            )
            self.session.add(account)
            self.session.flush()
            created.append(account)

        logger.info("chart_of_accounts_seeded", extra={"accounts_created": len(created)})
        return created

    def deactivate(self, code: str, actor_id: UUID) -> Account:
        account = self.get_by_code(code)
        if account is None:
            raise AccountNotFoundError(code)
        if account.is_system:
            raise InvalidInputError("code", f"system account {code} cannot be deactivated")
        account.is_active = False
        account.updated_by_id = actor_id
        self.session.flush()
        logger.info("account_deactivated", extra={"code": code})
        return account
