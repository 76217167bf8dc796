"""
Ledger Engine Package

The Balance Engine and the Overdraft Engine hold every rule that changes
money: debits, refunds, shortfall overdrafts and settlements.
"""

from potledger.engine.errors import (
    LEDGER_FAILURES,
    InsufficientFundsError,
    LedgerError,
    LedgerValidationError,
    OverdraftAlreadySettledError,
    ReferentialIntegrityError,
)
from potledger.engine.balance import (
    BalanceEngine,
    compute_debit,
    merge_edit,
    rebased_remaining_balance,
    revision_adjustments,
)
from potledger.engine.overdraft import (
    OverdraftEngine,
    settlement_payment,
)

__all__ = [
    # Errors
    "LEDGER_FAILURES",
    "InsufficientFundsError",
    "LedgerError",
    "LedgerValidationError",
    "OverdraftAlreadySettledError",
    "ReferentialIntegrityError",
    # Engines
    "BalanceEngine",
    "OverdraftEngine",
    # Pure helpers
    "compute_debit",
    "merge_edit",
    "rebased_remaining_balance",
    "revision_adjustments",
    "settlement_payment",
]
