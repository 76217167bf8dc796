"""
Command Interface for Pot Ledger

This module ties together all the components and defines the commands
the dashboard can run against the ledger:
1. Inflows (add, update, set balance, delete, recalculate)
2. Outflows (add, update, delete)
3. Overdrafts (add, update, settle, delete)

DESIGN DECISION: The command layer enforces the boundaries:
- No input reaches the store without validation
- Every balance change goes through an engine transaction
- Every command is audited, failures included

Failures are raised as typed errors (LEDGER_FAILURES) after being
audited. Nothing is retried or recovered silently.
"""

import datetime as dt
from typing import Optional, Union
from uuid import UUID

import structlog

from potledger.audit import AuditLogger, create_correlation_id
from potledger.config import LedgerSettings, get_settings
from potledger.engine import (
    LEDGER_FAILURES,
    BalanceEngine,
    LedgerValidationError,
    OverdraftEngine,
    ReferentialIntegrityError,
    merge_edit,
    rebased_remaining_balance,
)
from potledger.models.audit import AuditEventBuilder
from potledger.models.records import (
    Currency,
    DeletedOverdraft,
    Inflow,
    InflowDraft,
    LedgerCollection,
    LedgerRecord,
    OutflowDraft,
    Overdraft,
    OverdraftDraft,
    RecalculationResult,
    RecordDraft,
    RecordedOutflow,
    ReversedOutflow,
    RevisedOutflow,
    SettlementResult,
    ValidationResult,
)
from potledger.queries import LedgerQueryService
from potledger.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryLedgerStore,
    LedgerCache,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
)
from potledger.validation import LedgerValidator, parse_amount


logger = structlog.get_logger(__name__)

RecordId = Union[str, UUID]


class LedgerCommands:
    """
    The eleven ledger commands, plus the manual balance correction.

    Each command:
    1. Validates its input (LedgerValidationError on errors)
    2. Runs the engine or a store transaction
    3. Writes an audit event
    4. Returns the resulting record or result
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
        balance_engine: Optional[BalanceEngine] = None,
        overdraft_engine: Optional[OverdraftEngine] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or LedgerValidator(store)
        self._balance = balance_engine or BalanceEngine(store, self._settings)
        self._overdrafts = overdraft_engine or OverdraftEngine(
            store, self._balance, self._settings
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _check(self, result: ValidationResult, correlation_id: UUID) -> None:
        if result.has_errors:
            await self._audit_logger.log_validation_failed(result, correlation_id)
            raise LedgerValidationError(result)

    @staticmethod
    def _build(draft: RecordDraft, **kwargs) -> LedgerRecord:
        """Turn a validated draft into a record; schema limits still apply."""
        try:
            return draft.to_record(**kwargs)
        except ValueError as e:
            raise LedgerValidationError(message=str(e))

    async def _failed(
        self,
        command: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        if not isinstance(error, LedgerValidationError):
            await self._audit_logger.log_command_failed(command, error, correlation_id)

    # =========================================================================
    # INFLOWS
    # =========================================================================

    async def add_inflow(
        self,
        draft: InflowDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Inflow:
        """Record funds received. The whole amount starts out available."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            await self._check(self._validator.validate_inflow(draft), correlation_id)
            inflow = self._build(
                draft, default_currency=Currency(self._settings.default_currency)
            )

            async def create(txn: LedgerTransaction) -> None:
                if await txn.get(LedgerCollection.INFLOWS, inflow.doc_id) is not None:
                    raise DuplicateError(LedgerCollection.INFLOWS, inflow.doc_id)
                txn.set(LedgerCollection.INFLOWS, inflow.doc_id, inflow.to_document())

            await self._store.transactionally(create)
        except LEDGER_FAILURES as e:
            await self._failed("add_inflow", e, correlation_id)
            raise

        await self._audit_logger.log_inflow_added(inflow, correlation_id)
        return inflow

    async def update_inflow(
        self,
        inflow_id: RecordId,
        draft: InflowDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Inflow:
        """
        Edit an inflow.

        Only the fields the draft sets are changed; the rest keep their
        stored values. A changed principal moves the remaining balance by
        the same amount, so what was already spent stays spent.
        """
        correlation_id = correlation_id or create_correlation_id()
        inflow_id = str(inflow_id)
        try:
            await self._check(self._validator.validate_inflow(draft), correlation_id)
            changes = draft.changes()

            async def update(txn: LedgerTransaction) -> Inflow:
                document = await txn.get(LedgerCollection.INFLOWS, inflow_id)
                if document is None:
                    raise NotFoundError(LedgerCollection.INFLOWS, inflow_id)
                original = Inflow.from_document(document)
                edited = merge_edit(original, changes)
                updated = edited.model_copy(update={
                    "remaining_balance": rebased_remaining_balance(original, edited.amount),
                })
                txn.set(LedgerCollection.INFLOWS, inflow_id, updated.to_document())
                return updated

            inflow = await self._store.transactionally(update)
        except LEDGER_FAILURES as e:
            await self._failed("update_inflow", e, correlation_id)
            raise

        await self._audit_logger.log_inflow_updated(inflow, correlation_id)
        return inflow

    async def set_inflow_balance(
        self,
        inflow_id: RecordId,
        balance: Union[str, int, float],
        correlation_id: Optional[UUID] = None,
    ) -> Inflow:
        """
        Overwrite an inflow's remaining balance by hand.

        Used to correct overdrawn pots. recalculate_inflow_balance is the
        way to get back to the balance the outflows imply.
        """
        correlation_id = correlation_id or create_correlation_id()
        inflow_id = str(inflow_id)
        try:
            new_balance = parse_amount(balance, field="remaining_balance")

            async def set_balance(txn: LedgerTransaction) -> Inflow:
                document = await txn.get(LedgerCollection.INFLOWS, inflow_id)
                if document is None:
                    raise NotFoundError(LedgerCollection.INFLOWS, inflow_id)
                inflow = Inflow.from_document(document)
                txn.update(
                    LedgerCollection.INFLOWS,
                    inflow_id,
                    {"remaining_balance": str(new_balance)},
                )
                return inflow

            previous = await self._store.transactionally(set_balance)
        except LEDGER_FAILURES as e:
            await self._failed("set_inflow_balance", e, correlation_id)
            raise

        await self._audit_logger.log(AuditEventBuilder.inflow_balance_set(
            inflow_id=previous.id,
            previous_balance=previous.remaining_balance,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))
        return previous.model_copy(update={"remaining_balance": new_balance})

    async def delete_inflow(
        self,
        inflow_id: RecordId,
        correlation_id: Optional[UUID] = None,
    ) -> Inflow:
        """
        Delete an inflow that funds nothing.

        Raises:
            ReferentialIntegrityError: If any outflow still references it
        """
        correlation_id = correlation_id or create_correlation_id()
        inflow_id = str(inflow_id)
        try:
            async def delete(txn: LedgerTransaction) -> Inflow:
                document = await txn.get(LedgerCollection.INFLOWS, inflow_id)
                if document is None:
                    raise NotFoundError(LedgerCollection.INFLOWS, inflow_id)
                funded = await txn.query(LedgerCollection.OUTFLOWS, inflow_id=inflow_id)
                if funded:
                    raise ReferentialIntegrityError(inflow_id, len(funded))
                txn.delete(LedgerCollection.INFLOWS, inflow_id)
                return Inflow.from_document(document)

            inflow = await self._store.transactionally(delete)
        except LEDGER_FAILURES as e:
            await self._failed("delete_inflow", e, correlation_id)
            raise

        await self._audit_logger.log(
            AuditEventBuilder.inflow_deleted(inflow.id, correlation_id)
        )
        return inflow

    async def recalculate_inflow_balance(
        self,
        inflow_id: RecordId,
        correlation_id: Optional[UUID] = None,
    ) -> RecalculationResult:
        """Rebuild an inflow's balance from its outflows."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            result = await self._balance.recalculate_balance(str(inflow_id))
        except LEDGER_FAILURES as e:
            await self._failed("recalculate_inflow_balance", e, correlation_id)
            raise

        await self._audit_logger.log_balance_recalculated(result, correlation_id)
        return result

    # =========================================================================
    # OUTFLOWS
    # =========================================================================

    async def add_outflow(
        self,
        draft: OutflowDraft,
        correlation_id: Optional[UUID] = None,
    ) -> RecordedOutflow:
        """Record an expense. An underfunded expense also creates an overdraft."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            await self._check(await self._validator.validate_outflow(draft), correlation_id)
            recorded = await self._balance.record_outflow(self._build(draft))
        except LEDGER_FAILURES as e:
            await self._failed("add_outflow", e, correlation_id)
            raise

        await self._audit_logger.log_outflow_recorded(recorded, correlation_id)
        return recorded

    async def update_outflow(
        self,
        outflow_id: RecordId,
        draft: OutflowDraft,
        correlation_id: Optional[UUID] = None,
    ) -> RevisedOutflow:
        """
        Edit an expense, including moving it to another fund source.

        Fields the draft leaves out keep their stored values. A revision
        can leave an inflow negative; it never creates an overdraft.
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            result = await self._validator.validate_outflow(draft, check_funding=False)
            await self._check(result, correlation_id)
            revision = await self._balance.revise_outflow(str(outflow_id), draft.changes())
        except LEDGER_FAILURES as e:
            await self._failed("update_outflow", e, correlation_id)
            raise

        await self._audit_logger.log_outflow_revised(revision, correlation_id)
        return revision

    async def delete_outflow(
        self,
        outflow_id: RecordId,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[ReversedOutflow]:
        """Delete an expense and refund its fund source. None if already gone."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            reversal = await self._balance.reverse_outflow(str(outflow_id))
        except LEDGER_FAILURES as e:
            await self._failed("delete_outflow", e, correlation_id)
            raise

        if reversal is not None:
            await self._audit_logger.log_outflow_reversed(reversal, correlation_id)
        return reversal

    # =========================================================================
    # OVERDRAFTS
    # =========================================================================

    async def add_overdraft(
        self,
        draft: OverdraftDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Overdraft:
        """Log a liability directly, without touching any inflow."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            await self._check(self._validator.validate_overdraft(draft), correlation_id)
            overdraft = await self._overdrafts.create_ad_hoc_overdraft(self._build(draft))
        except LEDGER_FAILURES as e:
            await self._failed("add_overdraft", e, correlation_id)
            raise

        await self._audit_logger.log_overdraft_added(overdraft, correlation_id)
        return overdraft

    async def update_overdraft(
        self,
        overdraft_id: RecordId,
        draft: OverdraftDraft,
        correlation_id: Optional[UUID] = None,
    ) -> Overdraft:
        """
        Edit an overdraft's details.

        Settlement state and creation time are kept from the stored record.
        A settled overdraft keeps its zero amount, so its details can still
        be edited.
        """
        correlation_id = correlation_id or create_correlation_id()
        overdraft_id = str(overdraft_id)
        try:
            result = self._validator.validate_overdraft(draft, require_amount=False)
            await self._check(result, correlation_id)
            overdraft = await self._overdrafts.update_overdraft(overdraft_id, draft.changes())
        except LEDGER_FAILURES as e:
            await self._failed("update_overdraft", e, correlation_id)
            raise

        await self._audit_logger.log(
            AuditEventBuilder.overdraft_updated(overdraft.id, correlation_id)
        )
        return overdraft

    async def settle_overdraft(
        self,
        overdraft_id: RecordId,
        inflow_id: RecordId,
        today: Optional[dt.date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SettlementResult:
        """Pay an overdraft down from an inflow's spare balance."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            result = await self._overdrafts.settle_overdraft(
                str(overdraft_id), str(inflow_id), today=today
            )
        except LEDGER_FAILURES as e:
            await self._failed("settle_overdraft", e, correlation_id)
            raise

        await self._audit_logger.log_overdraft_settled(result, correlation_id)
        return result

    async def delete_overdraft(
        self,
        overdraft_id: RecordId,
        correlation_id: Optional[UUID] = None,
    ) -> DeletedOverdraft:
        """Delete an overdraft, refunding its settlement payment if it was settled."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            deletion = await self._overdrafts.delete_overdraft(str(overdraft_id))
        except LEDGER_FAILURES as e:
            await self._failed("delete_overdraft", e, correlation_id)
            raise

        await self._audit_logger.log_overdraft_deleted(deletion, correlation_id)
        return deletion


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerCommands, LedgerQueryService, LedgerCache, LedgerStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to keep the ledger in memory.

    Returns:
        (commands, queries, cache, store)
    """
    settings = get_settings()
    store: Optional[LedgerStoreInterface] = None
    audit_logger = None

    if use_storage and not settings.app.use_in_memory_store:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.get_spreadsheet()
            store = GoogleSheetsLedgerStore(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryLedgerStore()
        audit_logger = AuditLogger()  # Local-only logging

    commands = LedgerCommands(store, audit_logger=audit_logger, settings=settings.ledger)
    cache = LedgerCache(store)
    cache.start()
    queries = LedgerQueryService(cache, settings.ledger)

    return commands, queries, cache, store
