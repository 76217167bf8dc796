"""Draft validation for the ledger entry forms."""

from potledger.validation.validator import LedgerValidator, parse_amount

__all__ = [
    "LedgerValidator",
    "parse_amount",
]
