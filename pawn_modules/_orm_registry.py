"""
Module ORM Registry (``pawn_modules._orm_registry``).

Responsibility
--------------
Ensure every kernel and module SQLAlchemy model is imported so that
``Base.metadata`` holds all table definitions before ``create_all()`` runs.

Usage
-----
``pawn_kernel.db.engine.create_tables()``, ``scripts/init_db.py`` and
``tests/conftest.py`` all go through ``create_all_tables()`` or
``import_all_orm_models()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``pawn_modules.*.orm`` module.  Idempotent."""
    import pawn_kernel.models  # noqa: F401
    import pawn_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    # fmt: off
    import pawn_modules.loans.orm  # noqa: F401
    import pawn_modules.cash.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """
    Create kernel and module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from pawn_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
