"""
Typed Exception Hierarchy for the Pawn Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (an HTTP layer, a batch job, a test) must react to the
KIND of failure, never to its wording.  Matching on substrings such as
"not found" breaks as soon as a message is reworded.

Every exception here carries:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A KIND class attribute (one of five ErrorKind tags)
  4. Structured DATA as instance attributes (not just a message string)

Example - WRONG way:
    try:
        payments.make_payment(request)
    except Exception as e:
        if "exceeds" in str(e):
            ...

Example - RIGHT way:
    try:
        payments.make_payment(request)
    except OverpaymentError as e:
        quote = e.payoff_amount
    except PawnLedgerError as e:
        return {"error": e.code, "kind": e.kind.value}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PawnLedgerError (base)
    |
    +-- InvalidInputError                  kind=INVALID_INPUT
    |   +-- OutOfRangeError
    |   +-- UnbalancedEntryError
    |   +-- InactiveAccountError
    |   +-- CashSessionRequiredError
    |
    +-- InvalidStatusError                 kind=INVALID_STATUS
    |   +-- InvalidLoanTransitionError
    |   +-- SessionNotOpenError
    |
    +-- InvalidAmountError                 kind=INVALID_AMOUNT
    |   +-- NonPositiveAmountError
    |   +-- OverpaymentError
    |   +-- InsufficientCashError
    |
    +-- ConflictError                      kind=CONFLICT
    |   +-- SessionAlreadyOpenError
    |   +-- SessionAlreadyClosedError
    |   +-- PaymentAlreadyReversedError
    |   +-- IrreversibleLoanStateError
    |   +-- EntryAlreadyReversedError
    |   +-- OptimisticLockError
    |   +-- ConstraintViolationError
    |   +-- ImmutabilityViolationError
    |
    +-- NotFoundError                      kind=NOT_FOUND
        +-- LoanNotFoundError
        +-- PaymentNotFoundError
        +-- CashSessionNotFoundError
        +-- AccountNotFoundError
        +-- AccountingEntryNotFoundError

===============================================================================
RETRY POLICY
===============================================================================

Only CONFLICT errors are retryable, and only after the caller re-reads the
state it is acting on.  INVALID_INPUT, INVALID_STATUS and INVALID_AMOUNT
reproduce the same failure when retried with the same input.

===============================================================================
STORAGE ERRORS
===============================================================================

Raw driver messages (constraint text, SQL fragments) never appear in the
message of an exception raised here.  ConstraintViolationError carries only
the constraint name as structured context.
"""

from decimal import Decimal
from enum import Enum


class ErrorKind(str, Enum):
    """The five error tags callers are expected to match on."""

    INVALID_INPUT = "invalid_input"
    INVALID_STATUS = "invalid_status"
    INVALID_AMOUNT = "invalid_amount"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class PawnLedgerError(Exception):
    """
    Base exception for all pawn ledger errors.

    All subclasses carry a `code` class attribute for machine-readable
    identification and a `kind` class attribute naming the error tag.
    """

    code: str = "PAWN_LEDGER_ERROR"
    kind: ErrorKind = ErrorKind.INVALID_INPUT

    @property
    def is_retryable(self) -> bool:
        return self.kind is ErrorKind.CONFLICT


# Invalid input


class InvalidInputError(PawnLedgerError):
    """Malformed or out-of-range request data."""

    code: str = "INVALID_INPUT"
    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class OutOfRangeError(InvalidInputError):
    """Value falls outside the configured limits for its category."""

    code: str = "OUT_OF_RANGE"

    def __init__(self, field: str, value: object, minimum: object, maximum: object):
        self.value = value
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            field, f"{value} is outside the allowed range [{minimum}, {maximum}]"
        )


class UnbalancedEntryError(InvalidInputError):
    """Accounting entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = str(debits)
        self.credits = str(credits)
        super().__init__(
            "lines", f"unbalanced entry: debits={debits}, credits={credits}"
        )


class InactiveAccountError(InvalidInputError):
    """Account exists but is deactivated and cannot be posted to."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("account_id", f"account {account_id} is inactive")


class CashSessionRequiredError(InvalidInputError):
    """A cash-method movement was requested without an open cash session."""

    code: str = "CASH_SESSION_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            "cash_session_id", f"{operation} in cash requires an open cash session"
        )


# Invalid status


class InvalidStatusError(PawnLedgerError):
    """Operation is not legal from the entity's current state."""

    code: str = "INVALID_STATUS"
    kind: ErrorKind = ErrorKind.INVALID_STATUS

    def __init__(self, entity_type: str, entity_id: str, status: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} in status '{status}'"
        )


class InvalidLoanTransitionError(InvalidStatusError):
    """Loan state machine does not allow the requested transition."""

    code: str = "INVALID_LOAN_TRANSITION"

    def __init__(self, loan_id: str, status: str, operation: str):
        super().__init__("loan", loan_id, status, operation)


class SessionNotOpenError(InvalidStatusError):
    """Movement recorded against a cash session that is not open."""

    code: str = "CASH_SESSION_NOT_OPEN"

    def __init__(self, session_id: str, status: str):
        super().__init__("cash_session", session_id, status, "record movement on")


# Invalid amount


class InvalidAmountError(PawnLedgerError):
    """Amount violates a money invariant."""

    code: str = "INVALID_AMOUNT"
    kind: ErrorKind = ErrorKind.INVALID_AMOUNT

    def __init__(self, amount: Decimal, reason: str):
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class NonPositiveAmountError(InvalidAmountError):
    """Zero or negative amount where a positive one is required."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, amount: Decimal):
        super().__init__(amount, "amount must be greater than zero")


class OverpaymentError(InvalidAmountError):
    """Payment exceeds the payoff amount of the loan."""

    code: str = "OVERPAYMENT"

    def __init__(self, amount: Decimal, payoff_amount: Decimal):
        self.payoff_amount = str(payoff_amount)
        super().__init__(amount, f"payment exceeds payoff amount {payoff_amount}")


class InsufficientCashError(InvalidAmountError):
    """Cash expense would drive the session balance below zero."""

    code: str = "INSUFFICIENT_CASH"

    def __init__(self, amount: Decimal, available: Decimal):
        self.available = str(available)
        super().__init__(amount, f"insufficient cash in session, available {available}")


# Conflict


class ConflictError(PawnLedgerError):
    """A concurrency or uniqueness guard tripped.  Safe to retry after re-reading."""

    code: str = "CONFLICT"
    kind: ErrorKind = ErrorKind.CONFLICT


class SessionAlreadyOpenError(ConflictError):
    """An open cash session already exists for the register or the user."""

    code: str = "CASH_SESSION_ALREADY_OPEN"

    def __init__(self, cash_register_id: str | None = None, user_id: str | None = None):
        self.cash_register_id = cash_register_id
        self.user_id = user_id
        owner = (
            f"register {cash_register_id}" if cash_register_id else f"user {user_id}"
        )
        super().__init__(f"An open cash session already exists for {owner}")


class SessionAlreadyClosedError(ConflictError):
    """Cash session was closed before this close could apply."""

    code: str = "CASH_SESSION_ALREADY_CLOSED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Cash session {session_id} is already closed")


class PaymentAlreadyReversedError(ConflictError):
    """Payment has already been reversed."""

    code: str = "PAYMENT_ALREADY_REVERSED"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} is already reversed")


class IrreversibleLoanStateError(ConflictError):
    """Loan reached a state from which payments can no longer be reversed."""

    code: str = "IRREVERSIBLE_LOAN_STATE"

    def __init__(self, loan_id: str, status: str):
        self.loan_id = loan_id
        self.status = status
        super().__init__(
            f"Payments on loan {loan_id} cannot be reversed in status '{status}'"
        )


class EntryAlreadyReversedError(ConflictError):
    """Accounting entry already has a reversing entry."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_entry_id: str):
        self.entry_id = entry_id
        self.reversal_entry_id = reversal_entry_id
        super().__init__(
            f"Accounting entry {entry_id} already reversed by {reversal_entry_id}"
        )


class OptimisticLockError(ConflictError):
    """Row was modified by another transaction."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str | None = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type}: "
            "entity was modified by another transaction"
        )


class ConstraintViolationError(ConflictError):
    """A database uniqueness or integrity constraint rejected the write."""

    code: str = "CONSTRAINT_VIOLATION"

    def __init__(self, constraint_name: str | None):
        self.constraint_name = constraint_name
        super().__init__("A data integrity constraint rejected the operation")


class ImmutabilityViolationError(ConflictError):
    """
    Attempted to modify or delete an immutable record.

    Posted accounting entries, their lines, cash movements and reversed
    payments are immutable.  Loans are never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Not found


class NotFoundError(PawnLedgerError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND

    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type.capitalize()} not found: {entity_id}")


class LoanNotFoundError(NotFoundError):
    code: str = "LOAN_NOT_FOUND"
    entity_type = "loan"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type = "payment"


class CashSessionNotFoundError(NotFoundError):
    code: str = "CASH_SESSION_NOT_FOUND"
    entity_type = "cash session"


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"
    entity_type = "account"


class AccountingEntryNotFoundError(NotFoundError):
    code: str = "ACCOUNTING_ENTRY_NOT_FOUND"
    entity_type = "accounting entry"
