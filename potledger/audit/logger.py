"""
Audit Logger

DESIGN DECISION: Every change to the ledger is logged.
This provides:
1. Complete traceability of balance movements
2. Debugging capability when balances drift
3. The bookkeeper can see the history of a record
4. Compliance readiness

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from potledger.models.audit import AuditEvent, AuditEventBuilder
from potledger.models.records import (
    DeletedOverdraft,
    Inflow,
    Overdraft,
    RecalculationResult,
    RecordedOutflow,
    ReversedOutflow,
    RevisedOutflow,
    SettlementResult,
    ValidationResult,
)
from potledger.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit worksheet (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_inflow_added(
        self,
        inflow: Inflow,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.inflow_added(
            inflow_id=inflow.id,
            source=inflow.source,
            amount=inflow.amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_inflow_updated(
        self,
        inflow: Inflow,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.inflow_updated(
            inflow_id=inflow.id,
            amount=inflow.amount,
            remaining_balance=inflow.remaining_balance,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_outflow_recorded(
        self,
        recorded: RecordedOutflow,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a new outflow, plus the overdraft it spawned if underfunded."""
        await self.log(AuditEventBuilder.outflow_recorded(
            outflow_id=recorded.outflow.id,
            inflow_id=recorded.inflow.id,
            amount=recorded.outflow.amount,
            new_balance=recorded.inflow.remaining_balance,
            correlation_id=correlation_id,
        ))
        if recorded.overdraft is not None:
            await self.log(AuditEventBuilder.overdraft_auto_created(
                overdraft_id=recorded.overdraft.id,
                outflow_id=recorded.outflow.id,
                shortfall=recorded.overdraft.amount,
                correlation_id=correlation_id,
            ))

    async def log_outflow_revised(
        self,
        revision: RevisedOutflow,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.outflow_revised(
            outflow_id=revision.outflow.id,
            old_inflow_id=revision.previous.inflow_id,
            new_inflow_id=revision.outflow.inflow_id,
            old_amount=revision.previous.amount,
            new_amount=revision.outflow.amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_outflow_reversed(
        self,
        reversal: ReversedOutflow,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a deleted outflow. A missing source gets its own warning event."""
        outflow = reversal.outflow
        if reversal.refunded:
            event = AuditEventBuilder.outflow_reversed(
                outflow_id=outflow.id,
                inflow_id=outflow.inflow_id,
                amount=outflow.amount,
                correlation_id=correlation_id,
            )
        else:
            event = AuditEventBuilder.reversal_without_source(
                outflow_id=outflow.id,
                inflow_id=outflow.inflow_id,
                correlation_id=correlation_id,
            )
        await self.log(event)

    async def log_balance_recalculated(
        self,
        result: RecalculationResult,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balance_recalculated(
            inflow_id=result.inflow_id,
            total_out=result.total_out,
            previous_balance=result.previous_balance,
            new_balance=result.new_balance,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_overdraft_added(
        self,
        overdraft: Overdraft,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.overdraft_added(
            overdraft_id=overdraft.id,
            seller=overdraft.seller,
            amount=overdraft.amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_overdraft_settled(
        self,
        result: SettlementResult,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.overdraft_settled(
            overdraft_id=result.overdraft.id,
            inflow_id=result.inflow.id,
            payment_amount=result.payment_amount,
            remaining_debt=result.overdraft.amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_overdraft_deleted(
        self,
        deletion: DeletedOverdraft,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a deleted overdraft and flag a settlement that couldn't be refunded."""
        await self.log(AuditEventBuilder.overdraft_deleted(
            overdraft_id=deletion.overdraft.id,
            refunded_outflows=len(deletion.refunded_outflows),
            correlation_id=correlation_id,
        ))
        if deletion.refund_missing:
            await self.log(AuditEventBuilder.settlement_refund_missing(
                overdraft_id=deletion.overdraft.id,
                inflow_id=deletion.overdraft.settled_with_inflow_id,
                correlation_id=correlation_id,
            ))

    async def log_validation_failed(
        self,
        result: ValidationResult,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            record_type=result.record_type,
            issues=[issue.model_dump() for issue in result.issues],
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_command_failed(
        self,
        command: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.command_failed(
            command=command,
            error_type=type(error).__name__,
            error_message=str(error),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., recording an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
