"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Financial records must be tamper-proof.  A posted accounting entry, a cash
movement, or a reversed payment is history: it is corrected by writing a new
record (a reversing entry, an opposite movement), never by editing the old
one.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError before any SQL is emitted:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When Immutable                      | Allowed changes
---------------------|-------------------------------------|----------------------------
AccountingEntry      | After is_posted = true              | none
AccountingEntryLine  | When parent entry is posted         | none
CashMovement         | ALWAYS (append-only journal)        | none
Payment              | ALWAYS, except completed -> reversed| reversal fields, once
CashSession          | After status = closed               | none
Loan                 | Never deleted; frozen once renewed, | none once terminal
                     | confiscated or cancelled            |

updated_at / updated_by_id are audit metadata and may always change.

Bulk UPDATE statements (session.execute(update(...))) do not fire mapper
events.  The only bulk update in the ledger is the guarded cash-session
close, which is itself the sanctioned open -> closed transition.

===============================================================================
USAGE
===============================================================================

    from pawn_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, after models import

    unregister_immutability_listeners()  # TESTS ONLY
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from pawn_kernel.exceptions import ImmutabilityViolationError
from pawn_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

_PAYMENT_REVERSAL_FIELDS = frozenset({
    "status",
    "reversed_at",
    "reversed_by_id",
    "reversal_reason",
    "reversal_entry_id",
})

_TERMINAL_LOAN_STATUSES = frozenset({"renewed", "confiscated", "cancelled"})


def _blocked(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _previous_value(target, key: str):
    """Value of ``key`` before the pending change (or the current value)."""
    hist = get_history(target, key)
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return getattr(target, key)


def _as_str(value) -> str:
    return getattr(value, "value", value)


# ---------------------------------------------------------------------------
# Accounting entries
# ---------------------------------------------------------------------------


def _check_entry_immutability(mapper, connection, target):
    """Posted entries accept no changes at all."""
    if not _previous_value(target, "is_posted"):
        return
    changed = _changed_fields(target)
    if changed:
        _blocked(
            "AccountingEntry", target, "UPDATE",
            f"Cannot modify field '{changed[0]}' on posted accounting entry",
            field=changed[0],
        )


def _check_entry_delete(mapper, connection, target):
    if target.is_posted:
        _blocked(
            "AccountingEntry", target, "DELETE",
            "Posted accounting entries cannot be deleted",
        )


def _check_line_immutability(mapper, connection, target):
    if target.entry is not None and target.entry.is_posted:
        _blocked(
            "AccountingEntryLine", target, "UPDATE",
            "Lines cannot be modified after the entry is posted",
        )


def _check_line_delete(mapper, connection, target):
    if target.entry is not None and target.entry.is_posted:
        _blocked(
            "AccountingEntryLine", target, "DELETE",
            "Lines cannot be deleted after the entry is posted",
        )


# ---------------------------------------------------------------------------
# Cash movements and sessions
# ---------------------------------------------------------------------------


def _check_movement_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _blocked(
            "CashMovement", target, "UPDATE",
            "Cash movements are append-only",
            field=changed[0],
        )


def _check_movement_delete(mapper, connection, target):
    _blocked("CashMovement", target, "DELETE", "Cash movements are append-only")


def _check_cash_session_immutability(mapper, connection, target):
    if _as_str(_previous_value(target, "status")) != "closed":
        return
    changed = _changed_fields(target)
    if changed:
        _blocked(
            "CashSession", target, "UPDATE",
            "Closed cash sessions cannot be modified",
            field=changed[0],
        )


def _check_cash_session_delete(mapper, connection, target):
    _blocked("CashSession", target, "DELETE", "Cash sessions cannot be deleted")


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def _check_payment_immutability(mapper, connection, target):
    """
    Allow exactly one transition: completed -> reversed, touching only the
    reversal fields.  Everything else is frozen from creation.
    """
    changed = _changed_fields(target)
    if not changed:
        return

    old_status = _as_str(_previous_value(target, "status"))
    new_status = _as_str(target.status)
    is_reversal = old_status == "completed" and new_status == "reversed"

    disallowed = [f for f in changed if not is_reversal or f not in _PAYMENT_REVERSAL_FIELDS]
    if disallowed:
        _blocked(
            "Payment", target, "UPDATE",
            f"Cannot modify field '{disallowed[0]}' on payment in status '{old_status}'",
            field=disallowed[0],
        )


def _check_payment_delete(mapper, connection, target):
    _blocked("Payment", target, "DELETE", "Payments cannot be deleted; reverse instead")


# ---------------------------------------------------------------------------
# Loans
# ---------------------------------------------------------------------------


def _check_loan_immutability(mapper, connection, target):
    old_status = _as_str(_previous_value(target, "status"))
    if old_status not in _TERMINAL_LOAN_STATUSES:
        return
    changed = [f for f in _changed_fields(target) if f != "version"]
    if changed:
        _blocked(
            "Loan", target, "UPDATE",
            f"Cannot modify loan in terminal status '{old_status}'",
            field=changed[0],
        )


def _check_loan_delete(mapper, connection, target):
    _blocked("Loan", target, "DELETE", "Loans are never deleted")


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _listeners():
    from pawn_kernel.models.accounting_entry import AccountingEntry, AccountingEntryLine
    from pawn_modules.cash.orm import CashMovementModel, CashSessionModel
    from pawn_modules.loans.orm import LoanModel, PaymentModel

    return [
        (AccountingEntry, "before_update", _check_entry_immutability),
        (AccountingEntry, "before_delete", _check_entry_delete),
        (AccountingEntryLine, "before_update", _check_line_immutability),
        (AccountingEntryLine, "before_delete", _check_line_delete),
        (CashMovementModel, "before_update", _check_movement_immutability),
        (CashMovementModel, "before_delete", _check_movement_delete),
        (CashSessionModel, "before_update", _check_cash_session_immutability),
        (CashSessionModel, "before_delete", _check_cash_session_delete),
        (PaymentModel, "before_update", _check_payment_immutability),
        (PaymentModel, "before_delete", _check_payment_delete),
        (LoanModel, "before_update", _check_loan_immutability),
        (LoanModel, "before_delete", _check_loan_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Safe to call more than once.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    rules to verify detection.
    """
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
