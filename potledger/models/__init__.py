"""
Data Models Package

This package contains all Pydantic models used in Pot Ledger.
All data flowing through the system must conform to these schemas.
"""

from potledger.models.records import (
    Currency,
    DeletedOverdraft,
    EntryType,
    Inflow,
    InflowDraft,
    LedgerCollection,
    LedgerRecord,
    Outflow,
    OutflowDraft,
    Overdraft,
    OverdraftDraft,
    PaymentMethod,
    RecalculationResult,
    RecordedOutflow,
    ReversedOutflow,
    RevisedOutflow,
    SettlementResult,
    ValidationIssue,
    ValidationResult,
    parse_amount,
)
from potledger.models.views import (
    BankAccount,
    BankTransaction,
    DashboardMetrics,
    DaySummary,
    FlowTrace,
    LedgerEntry,
    MonthlyTrendPoint,
)
from potledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger records
    "Currency",
    "DeletedOverdraft",
    "EntryType",
    "Inflow",
    "InflowDraft",
    "LedgerCollection",
    "LedgerRecord",
    "Outflow",
    "OutflowDraft",
    "Overdraft",
    "OverdraftDraft",
    "PaymentMethod",
    "RecalculationResult",
    "RecordedOutflow",
    "ReversedOutflow",
    "RevisedOutflow",
    "SettlementResult",
    "ValidationIssue",
    "ValidationResult",
    "parse_amount",
    # Read models
    "BankAccount",
    "BankTransaction",
    "DashboardMetrics",
    "DaySummary",
    "FlowTrace",
    "LedgerEntry",
    "MonthlyTrendPoint",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
