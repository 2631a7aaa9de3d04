"""
Cash Session Module (``pawn_modules.cash``).

Responsibility
--------------
Register sessions: open, append income/expense movements with a running
balance, reconcile and close.

Architecture position
---------------------
**Modules layer** -- ``ledger`` is flush-only and shared with the loan
module; ``service`` (CashService) owns the transaction for stand-alone
cash operations.

Invariants enforced
-------------------
* One open session per register and per user.
* A closed session accepts no further movements and is never modified.
"""
