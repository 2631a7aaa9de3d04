"""
Cash Session ORM Models (``pawn_modules.cash.orm``).

Responsibility
--------------
SQLAlchemy persistence for cash sessions and their append-only movement
journal.

Invariants enforced
-------------------
- At most one open session per register and one per user: partial unique
  indexes on ``status = 'open'`` (PostgreSQL and SQLite).
- ``movement_seq`` is unique per session; the last movement by sequence
  carries the running balance.
- Movements are never updated or deleted (``pawn_kernel.db.immutability``).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from pawn_kernel.db.base import TrackedBase, UUIDString
from pawn_modules.cash.models import (
    CashMovement,
    CashSession,
    CashSessionStatus,
    MovementReference,
    MovementType,
)

_OPEN_ONLY = text("status = 'open'")


# ---------------------------------------------------------------------------
# CashSessionModel
# ---------------------------------------------------------------------------


class CashSessionModel(TrackedBase):
    """
    ORM model for ``CashSession``.

    Table: ``cash_sessions``
    """

    __tablename__ = "cash_sessions"

    __table_args__ = (
        Index(
            "uq_cash_sessions_open_register",
            "cash_register_id",
            unique=True,
            postgresql_where=_OPEN_ONLY,
            sqlite_where=_OPEN_ONLY,
        ),
        Index(
            "uq_cash_sessions_open_user",
            "user_id",
            unique=True,
            postgresql_where=_OPEN_ONLY,
            sqlite_where=_OPEN_ONLY,
        ),
        CheckConstraint("opening_amount >= 0", name="ck_cash_sessions_opening_non_negative"),
        Index("idx_cash_sessions_branch", "branch_id"),
    )

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    cash_register_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    opening_amount: Mapped[Decimal] = mapped_column(nullable=False)
    closing_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    difference: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(10), nullable=False)
    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    opening_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    closing_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_dto(self) -> CashSession:
        return CashSession(
            id=self.id,
            branch_id=self.branch_id,
            cash_register_id=self.cash_register_id,
            user_id=self.user_id,
            opening_amount=self.opening_amount,
            closing_amount=self.closing_amount,
            expected_amount=self.expected_amount,
            difference=self.difference,
            status=CashSessionStatus(self.status),
            opened_at=self.opened_at,
            closed_at=self.closed_at,
            opening_notes=self.opening_notes,
            closing_notes=self.closing_notes,
            closed_by_id=self.closed_by_id,
        )

    def __repr__(self) -> str:
        return f"<CashSessionModel register={self.cash_register_id} status={self.status}>"


# ---------------------------------------------------------------------------
# CashMovementModel
# ---------------------------------------------------------------------------


class CashMovementModel(TrackedBase):
    """
    ORM model for ``CashMovement``.

    Table: ``cash_movements``
    """

    __tablename__ = "cash_movements"

    __table_args__ = (
        UniqueConstraint("session_id", "movement_seq", name="uq_cash_movements_session_seq"),
        CheckConstraint("amount > 0", name="ck_cash_movements_amount_positive"),
        Index("idx_cash_movements_reference", "reference_type", "reference_id"),
    )

    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    session_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("cash_sessions.id"), nullable=False,
    )
    movement_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    def to_dto(self) -> CashMovement:
        return CashMovement(
            id=self.id,
            branch_id=self.branch_id,
            session_id=self.session_id,
            movement_seq=self.movement_seq,
            movement_type=MovementType(self.movement_type),
            amount=self.amount,
            payment_method=self.payment_method,
            reference_type=(
                MovementReference(self.reference_type) if self.reference_type else None
            ),
            reference_id=self.reference_id,
            description=self.description,
            balance_after=self.balance_after,
        )
