"""Read models for the dashboard."""

from potledger.queries.executor import LedgerQueryService

__all__ = ["LedgerQueryService"]
