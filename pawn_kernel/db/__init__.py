"""Database layer - engine, base classes, types, and immutability guards."""

from pawn_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from pawn_kernel.db.engine import create_tables, get_engine, get_session, transaction
from pawn_kernel.db.types import Money, Rate, ShortCode, round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "create_tables",
    "transaction",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "ShortCode",
    "round_money",
    "to_money",
]
