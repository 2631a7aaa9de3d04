"""
Collaborators -- interfaces to services the ledger does not own.

Responsibility:
    Declares the narrow protocols through which the ledger notifies the
    surrounding system: item status changes, customer credit statistics,
    and audit snapshots.  The ledger never persists item, customer, or audit
    data itself.

Architecture position:
    Kernel > Domain.  Pure interface definitions plus trivial defaults.
    Concrete adapters live in the application that embeds the ledger.

Invariants enforced:
    - Collaborators are invoked only AFTER the ledger transaction commits,
      so a ledger rollback never leaves a phantom notification behind.
    - Credit updates are expressed as deltas; the ledger never reads or
      writes absolute customer totals.

Failure modes:
    - Exceptions raised by a collaborator propagate to the caller unchanged.
      The ledger state is already committed at that point.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Protocol
from uuid import UUID

from pawn_kernel.logging_config import get_logger

logger = get_logger("domain.collaborators")


class ItemStatus(str, Enum):
    """Item states the ledger asks the item service to apply."""

    AVAILABLE = "available"
    COLLATERAL = "collateral"
    CONFISCATED = "confiscated"
    FOR_SALE = "for_sale"


@dataclass(frozen=True)
class CreditDelta:
    """Change to a customer's aggregate credit statistics."""

    total_loans: int = 0
    total_paid: Decimal = Decimal("0.00")
    total_defaulted: Decimal = Decimal("0.00")

    @property
    def is_empty(self) -> bool:
        return (
            self.total_loans == 0
            and self.total_paid == 0
            and self.total_defaulted == 0
        )


class ItemService(Protocol):
    def update_status(self, item_id: UUID, status: ItemStatus) -> None: ...


class CustomerService(Protocol):
    def update_credit_info(self, customer_id: UUID, delta: CreditDelta) -> None: ...


class AuditLogger(Protocol):
    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        actor_id: UUID,
    ) -> None: ...


class NullItemService:
    """Item service that ignores status changes."""

    def update_status(self, item_id: UUID, status: ItemStatus) -> None:
        return None


class NullCustomerService:
    """Customer service that ignores credit deltas."""

    def update_credit_info(self, customer_id: UUID, delta: CreditDelta) -> None:
        return None


class LoggingAuditLogger:
    """Audit logger that writes each record as a structured log line."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: UUID,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
        actor_id: UUID,
    ) -> None:
        logger.info(
            "audit_record",
            extra={
                "action": action,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "before": dict(before) if before is not None else None,
                "after": dict(after) if after is not None else None,
                "audit_actor_id": str(actor_id),
            },
        )


@dataclass
class Collaborators:
    """Bundle of collaborator adapters handed to orchestrating services."""

    items: ItemService
    customers: CustomerService
    audit: AuditLogger

    @classmethod
    def defaults(cls) -> Collaborators:
        return cls(
            items=NullItemService(),
            customers=NullCustomerService(),
            audit=LoggingAuditLogger(),
        )
