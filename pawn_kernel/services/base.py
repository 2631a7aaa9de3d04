"""
BaseService -- abstract base for all flush-only ledger services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every component service (accounting poster, loan ledger, cash session
    ledger).  They receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: component services flush within the caller's
    transaction and never commit or roll back themselves.  The orchestrating
    service (LoanService, PaymentService, CashService, JournalService) owns
    commit/rollback through ``pawn_kernel.db.engine.transaction``.

Failure modes:
    - A subclass that commits breaks the atomicity of multi-step operations
      (allocate, update loan, record movement, post entry).
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for flush-only services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read models; those belong in ``selectors/``.
    """

    def __init__(self, session: Session):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session
