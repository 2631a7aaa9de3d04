"""
Pure domain layer.

Clock abstraction and collaborator protocols.  No ORM, no database.
"""

from pawn_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pawn_kernel.domain.collaborators import (
    AuditLogger,
    Collaborators,
    CreditDelta,
    CustomerService,
    ItemService,
    ItemStatus,
    LoggingAuditLogger,
    NullCustomerService,
    NullItemService,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AuditLogger",
    "Collaborators",
    "CreditDelta",
    "CustomerService",
    "ItemService",
    "ItemStatus",
    "LoggingAuditLogger",
    "NullCustomerService",
    "NullItemService",
]
