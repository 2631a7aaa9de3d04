"""
pawn_modules -- business modules built on the pawn kernel.

    loans   loan ledger, installment planner, payment allocator and the
            LoanService / PaymentService orchestrators
    cash    cash session ledger and the CashService orchestrator

Modules may import from ``pawn_kernel`` and ``pawn_config``.  The kernel
never imports a module at import time.
"""
