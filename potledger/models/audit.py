"""
Audit Models for Pot Ledger

Every ledger mutation is logged for audit purposes.
This provides:
1. Complete traceability of every balance change
2. Debugging information when balances drift
3. A record of the non-fatal discrepancies the engines tolerate

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Inflows
    INFLOW_ADDED = "inflow_added"
    INFLOW_UPDATED = "inflow_updated"
    INFLOW_DELETED = "inflow_deleted"
    INFLOW_BALANCE_SET = "inflow_balance_set"
    BALANCE_RECALCULATED = "balance_recalculated"

    # Outflows
    OUTFLOW_RECORDED = "outflow_recorded"
    OUTFLOW_REVISED = "outflow_revised"
    OUTFLOW_REVERSED = "outflow_reversed"
    REVERSAL_WITHOUT_SOURCE = "reversal_without_source"

    # Overdrafts
    OVERDRAFT_AUTO_CREATED = "overdraft_auto_created"
    OVERDRAFT_ADDED = "overdraft_added"
    OVERDRAFT_UPDATED = "overdraft_updated"
    OVERDRAFT_SETTLED = "overdraft_settled"
    OVERDRAFT_PARTIALLY_SETTLED = "overdraft_partially_settled"
    OVERDRAFT_DELETED = "overdraft_deleted"
    SETTLEMENT_REFUND_MISSING = "settlement_refund_missing"

    # Failures
    VALIDATION_FAILED = "validation_failed"
    COMMAND_FAILED = "command_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger command creates at least one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what record is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of record (inflow, outflow, overdraft)"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the record this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a settlement and its refund)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


def _money(amount: Decimal) -> str:
    return f"{amount:,}"


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.outflow_recorded(outflow_id, inflow_id, amount, balance)
        event = AuditEventBuilder.overdraft_settled(overdraft_id, inflow_id, payment, remaining)
    """

    @staticmethod
    def inflow_added(
        inflow_id: UUID,
        source: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INFLOW_ADDED,
            entity_type="inflow",
            entity_id=inflow_id,
            correlation_id=correlation_id,
            description=f"Funds received from {source}: {_money(amount)}",
            details={
                "source": source,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def inflow_updated(
        inflow_id: UUID,
        amount: Decimal,
        remaining_balance: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INFLOW_UPDATED,
            entity_type="inflow",
            entity_id=inflow_id,
            correlation_id=correlation_id,
            description="Inflow details updated",
            details={
                "amount": str(amount),
                "remaining_balance": str(remaining_balance),
            },
            is_user_action=True,
        )

    @staticmethod
    def inflow_deleted(
        inflow_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INFLOW_DELETED,
            entity_type="inflow",
            entity_id=inflow_id,
            correlation_id=correlation_id,
            description="Inflow deleted",
            is_user_action=True,
        )

    @staticmethod
    def inflow_balance_set(
        inflow_id: UUID,
        previous_balance: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INFLOW_BALANCE_SET,
            severity=AuditSeverity.WARNING,
            entity_type="inflow",
            entity_id=inflow_id,
            correlation_id=correlation_id,
            description=f"Balance manually set to {_money(new_balance)}",
            details={
                "previous_balance": str(previous_balance),
                "new_balance": str(new_balance),
            },
            is_user_action=True,
        )

    @staticmethod
    def balance_recalculated(
        inflow_id: UUID,
        total_out: Decimal,
        previous_balance: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        drift = new_balance - previous_balance
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RECALCULATED,
            severity=AuditSeverity.WARNING if drift else AuditSeverity.INFO,
            entity_type="inflow",
            entity_id=inflow_id,
            correlation_id=correlation_id,
            description=(
                f"Recalculated: total out {_money(total_out)}, "
                f"new balance {_money(new_balance)}"
            ),
            details={
                "total_out": str(total_out),
                "previous_balance": str(previous_balance),
                "new_balance": str(new_balance),
                "drift": str(drift),
            },
            is_user_action=True,
        )

    @staticmethod
    def outflow_recorded(
        outflow_id: UUID,
        inflow_id: UUID,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OUTFLOW_RECORDED,
            entity_type="outflow",
            entity_id=outflow_id,
            correlation_id=correlation_id,
            description=f"Expense of {_money(amount)} recorded",
            details={
                "inflow_id": str(inflow_id),
                "amount": str(amount),
                "inflow_balance": str(new_balance),
            },
            is_user_action=True,
        )

    @staticmethod
    def overdraft_auto_created(
        overdraft_id: UUID,
        outflow_id: UUID,
        shortfall: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OVERDRAFT_AUTO_CREATED,
            severity=AuditSeverity.WARNING,
            entity_type="overdraft",
            entity_id=overdraft_id,
            correlation_id=correlation_id,
            description=f"Source inflow short by {_money(shortfall)}; overdraft created",
            details={
                "outflow_id": str(outflow_id),
                "shortfall": str(shortfall),
            },
        )

    @staticmethod
    def outflow_revised(
        outflow_id: UUID,
        old_inflow_id: UUID,
        new_inflow_id: UUID,
        old_amount: Decimal,
        new_amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OUTFLOW_REVISED,
            entity_type="outflow",
            entity_id=outflow_id,
            correlation_id=correlation_id,
            description="Expense revised",
            details={
                "old_inflow_id": str(old_inflow_id),
                "new_inflow_id": str(new_inflow_id),
                "old_amount": str(old_amount),
                "new_amount": str(new_amount),
                "source_changed": old_inflow_id != new_inflow_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def outflow_reversed(
        outflow_id: UUID,
        inflow_id: UUID,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OUTFLOW_REVERSED,
            entity_type="outflow",
            entity_id=outflow_id,
            correlation_id=correlation_id,
            description=f"Expense deleted, {_money(amount)} refunded",
            details={
                "inflow_id": str(inflow_id),
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def reversal_without_source(
        outflow_id: UUID,
        inflow_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REVERSAL_WITHOUT_SOURCE,
            severity=AuditSeverity.WARNING,
            entity_type="outflow",
            entity_id=outflow_id,
            correlation_id=correlation_id,
            description="Expense deleted but its source inflow no longer exists; nothing refunded",
            details={
                "inflow_id": str(inflow_id),
            },
        )

    @staticmethod
    def overdraft_added(
        overdraft_id: UUID,
        seller: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OVERDRAFT_ADDED,
            entity_type="overdraft",
            entity_id=overdraft_id,
            correlation_id=correlation_id,
            description=f"Liability to {seller} logged: {_money(amount)}",
            details={
                "seller": seller,
                "amount": str(amount),
            },
            is_user_action=True,
        )

    @staticmethod
    def overdraft_updated(
        overdraft_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OVERDRAFT_UPDATED,
            entity_type="overdraft",
            entity_id=overdraft_id,
            correlation_id=correlation_id,
            description="Overdraft details updated",
            is_user_action=True,
        )

    @staticmethod
    def overdraft_settled(
        overdraft_id: UUID,
        inflow_id: UUID,
        payment_amount: Decimal,
        remaining_debt: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        fully = remaining_debt <= 0
        return AuditEvent(
            event_type=(
                AuditEventType.OVERDRAFT_SETTLED
                if fully
                else AuditEventType.OVERDRAFT_PARTIALLY_SETTLED
            ),
            entity_type="overdraft",
            entity_id=overdraft_id,
            correlation_id=correlation_id,
            description=(
                f"Overdraft {'settled' if fully else 'partially settled'} "
                f"with {_money(payment_amount)}"
            ),
            details={
                "inflow_id": str(inflow_id),
                "payment_amount": str(payment_amount),
                "remaining_debt": str(max(remaining_debt, Decimal("0"))),
            },
            is_user_action=True,
        )

    @staticmethod
    def overdraft_deleted(
        overdraft_id: UUID,
        refunded_outflows: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OVERDRAFT_DELETED,
            entity_type="overdraft",
            entity_id=overdraft_id,
            correlation_id=correlation_id,
            description=f"Overdraft deleted ({refunded_outflows} settlement payments refunded)",
            details={
                "refunded_outflows": refunded_outflows,
            },
            is_user_action=True,
        )

    @staticmethod
    def settlement_refund_missing(
        overdraft_id: UUID,
        inflow_id: UUID,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_REFUND_MISSING,
            severity=AuditSeverity.WARNING,
            entity_type="overdraft",
            entity_id=overdraft_id,
            correlation_id=correlation_id,
            description="Settled overdraft deleted but no settlement payment was found to refund",
            details={
                "settled_with_inflow_id": str(inflow_id),
            },
        )

    @staticmethod
    def validation_failed(
        record_type: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=record_type,
            correlation_id=correlation_id,
            description=f"{record_type.capitalize()} rejected with {len(issues)} issues",
            details={
                "issues": issues,
            },
            is_user_action=True,
        )

    @staticmethod
    def command_failed(
        command: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMMAND_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"{command} failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details={
                "command": command,
            },
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
