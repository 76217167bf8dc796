"""
Ledger Error Taxonomy

Business-rule failures raised by the engines and the command layer.
Storage failures (missing records, commit conflicts) come from the store
interface and are re-exported here so callers have one place to import
from. Catch LEDGER_FAILURES to handle both.
"""

from decimal import Decimal
from typing import Optional

from potledger.models.records import ValidationResult
from potledger.services.storage.interface import (
    DuplicateError,
    NotFoundError,
    StorageError,
    TransactionConflictError,
)


class LedgerError(Exception):
    """Base exception for ledger rule violations."""
    pass


class InsufficientFundsError(LedgerError):
    """The chosen inflow has no spare balance to pay with."""

    def __init__(self, inflow_id: str, available: Decimal):
        self.inflow_id = inflow_id
        self.available = available
        super().__init__(
            f"Inflow {inflow_id} has no funds available (balance {available})"
        )


class LedgerValidationError(LedgerError):
    """Input failed validation. Carries the full result for display."""

    def __init__(self, result: Optional[ValidationResult] = None, message: Optional[str] = None):
        self.result = result
        if message is None and result is not None:
            message = "; ".join(result.error_messages) or "Validation failed"
        super().__init__(message or "Validation failed")


class OverdraftAlreadySettledError(LedgerError):
    """Settlement attempted on an overdraft with nothing left to pay."""

    def __init__(self, overdraft_id: str):
        self.overdraft_id = overdraft_id
        super().__init__(f"Overdraft {overdraft_id} is already settled")


class ReferentialIntegrityError(LedgerError):
    """An inflow cannot be deleted while outflows still reference it."""

    def __init__(self, inflow_id: str, outflow_count: int):
        self.inflow_id = inflow_id
        self.outflow_count = outflow_count
        super().__init__(
            f"Inflow {inflow_id} still funds {outflow_count} outflow(s); "
            "delete or move them first"
        )


LEDGER_FAILURES = (LedgerError, StorageError)


__all__ = [
    "DuplicateError",
    "InsufficientFundsError",
    "LEDGER_FAILURES",
    "LedgerError",
    "LedgerValidationError",
    "NotFoundError",
    "OverdraftAlreadySettledError",
    "ReferentialIntegrityError",
    "StorageError",
    "TransactionConflictError",
]
