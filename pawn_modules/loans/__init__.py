"""
Loan Ledger Module (``pawn_modules.loans``).

Responsibility
--------------
Collateralised loans from creation to settlement: quotes, installment
schedules, payment allocation, overdue assessment with late fees,
renewal, confiscation and cancellation.

Architecture position
---------------------
**Modules layer** -- pure calculation in ``calculator``, ``planner`` and
``allocator``; flush-only persistence in ``ledger``; transaction owners in
``service`` (LoanService) and ``payment_service`` (PaymentService).

Invariants enforced
-------------------
* Conservation -- the remaining buckets plus amount paid always equal the
  total amount plus the accrued late fee.
* Payments are applied late fee first, then interest, then principal.
* Every money movement posts a balanced accounting entry when posting is
  enabled.

Failure modes
-------------
* Typed ``pawn_kernel.exceptions`` errors; the session is rolled back
  before the error reaches the caller.
"""
