"""
Balance Engine

Keeps every inflow's remaining_balance equal to its principal minus the
outflows that reference it.

DESIGN DECISION: Each operation does its read-compute-write inside one
store transaction, together with the records that depend on the new
balance. The engine never caches balances between calls.

Create and revise treat a shortfall differently:
- record_outflow floors the balance at zero and books the unfunded part
  as an Overdraft.
- revise_outflow applies the correction as is and can leave the inflow
  negative. No Overdraft is created for a revision.
Both behaviors are kept; a negative inflow shows as overdrawn in the
dashboard and can be corrected manually or settled.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from potledger.config import LedgerSettings, get_settings
from potledger.engine.errors import LedgerValidationError
from potledger.models.records import (
    Inflow,
    LedgerCollection,
    LedgerRecord,
    Outflow,
    Overdraft,
    RecalculationResult,
    RecordedOutflow,
    ReversedOutflow,
    RevisedOutflow,
)
from potledger.services.storage.interface import (
    DuplicateError,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
)


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


# =============================================================================
# PURE HELPERS
# =============================================================================

def compute_debit(balance: Decimal, amount: Decimal) -> tuple[Decimal, Decimal]:
    """
    Debit an amount from a balance, flooring at zero.

    Returns:
        (new balance, shortfall). The shortfall is what the balance could
        not cover, including any negative balance carried in.
    """
    new_balance = balance - amount
    if new_balance < 0:
        return ZERO, -new_balance
    return new_balance, ZERO


def revision_adjustments(old: Outflow, new: Outflow) -> dict[str, Decimal]:
    """
    Balance deltas, keyed by inflow id, for replacing old with new.

    Same source: the difference goes back (or comes out). A moved outflow
    refunds its old source in full and debits the new one in full.
    """
    if old.inflow_id == new.inflow_id:
        return {str(old.inflow_id): old.amount - new.amount}
    return {
        str(old.inflow_id): old.amount,
        str(new.inflow_id): -new.amount,
    }


def rebased_remaining_balance(original: Inflow, new_amount: Decimal) -> Decimal:
    """Remaining balance after a principal edit; what was spent stays spent."""
    return new_amount - original.spent


def balance_fields(balance: Decimal) -> dict[str, str]:
    return {"remaining_balance": str(balance)}


def merge_edit(record: LedgerRecord, changes: dict[str, Any]) -> LedgerRecord:
    """
    Apply edited fields to a stored record.

    Raises:
        LedgerValidationError: If the edited record breaks a field constraint
    """
    try:
        return record.merged(changes)
    except ValueError as e:
        raise LedgerValidationError(message=str(e))


async def read_inflow(txn: LedgerTransaction, inflow_id: str) -> Inflow:
    """Read an inflow inside a transaction or abort it."""
    document = await txn.get(LedgerCollection.INFLOWS, inflow_id)
    if document is None:
        raise NotFoundError(
            LedgerCollection.INFLOWS,
            inflow_id,
            f"Fund source does not exist: {inflow_id}",
        )
    return Inflow.from_document(document)


# =============================================================================
# ENGINE
# =============================================================================

class BalanceEngine:
    """
    Applies outflow lifecycle events to inflow balances.

    Usage:
        engine = BalanceEngine(store)
        recorded = await engine.record_outflow(outflow)
        if recorded.was_underfunded:
            ...
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger

    def shortfall_overdraft(self, outflow: Outflow, shortfall: Decimal) -> Overdraft:
        """The liability booked for the part of an outflow its inflow couldn't cover."""
        return Overdraft(
            date=outflow.date,
            purpose=f"{self._settings.overdraft_purpose_prefix}{outflow.purpose}",
            amount=shortfall,
            seller=outflow.seller,
            is_settled=False,
            notes=f"Auto-Overdraft from: {outflow.purpose} ({outflow.category})",
        )

    async def record_outflow(self, outflow: Outflow) -> RecordedOutflow:
        """
        Debit a new outflow from its inflow.

        The outflow is stored at its full amount. If the inflow can't cover
        it, the inflow is set to zero and one Overdraft is created for the
        shortfall in the same transaction.

        Raises:
            NotFoundError: If the source inflow doesn't exist
            DuplicateError: If an outflow with this id already exists
        """
        inflow_id = str(outflow.inflow_id)

        async def debit(txn: LedgerTransaction) -> RecordedOutflow:
            if await txn.get(LedgerCollection.OUTFLOWS, outflow.doc_id) is not None:
                raise DuplicateError(LedgerCollection.OUTFLOWS, outflow.doc_id)
            inflow = await read_inflow(txn, inflow_id)

            new_balance, shortfall = compute_debit(inflow.remaining_balance, outflow.amount)
            overdraft = None
            if shortfall > 0:
                overdraft = self.shortfall_overdraft(outflow, shortfall)
                txn.set(LedgerCollection.OVERDRAFTS, overdraft.doc_id, overdraft.to_document())

            txn.update(LedgerCollection.INFLOWS, inflow_id, balance_fields(new_balance))
            txn.set(LedgerCollection.OUTFLOWS, outflow.doc_id, outflow.to_document())

            return RecordedOutflow(
                outflow=outflow,
                inflow=inflow.model_copy(update={"remaining_balance": new_balance}),
                overdraft=overdraft,
            )

        recorded = await self._store.transactionally(debit)
        logger.info(
            "outflow_recorded",
            outflow_id=outflow.doc_id,
            inflow_id=inflow_id,
            amount=str(outflow.amount),
            new_balance=str(recorded.inflow.remaining_balance),
            overdraft_id=recorded.overdraft.doc_id if recorded.overdraft else None,
        )
        return recorded

    async def revise_outflow(self, outflow_id: str, changes: dict[str, Any]) -> RevisedOutflow:
        """
        Edit a stored outflow, correcting the affected balances.

        The changes are merged over the stored outflow inside the
        transaction, so fields they leave out keep their stored values.
        Both the old and the new source must exist or nothing is written.
        The result can leave an inflow negative; no Overdraft is created
        here, unlike record_outflow.

        Raises:
            NotFoundError: If the outflow or either source inflow is missing
            LedgerValidationError: If the merged outflow is invalid
        """
        outflow_id = str(outflow_id)

        async def revise(txn: LedgerTransaction) -> RevisedOutflow:
            document = await txn.get(LedgerCollection.OUTFLOWS, outflow_id)
            if document is None:
                raise NotFoundError(LedgerCollection.OUTFLOWS, outflow_id)
            previous = Outflow.from_document(document)
            revised = merge_edit(previous, changes)

            adjustments = revision_adjustments(previous, revised)
            inflows = {
                inflow_id: await read_inflow(txn, inflow_id)
                for inflow_id in adjustments
            }

            for inflow_id, delta in adjustments.items():
                new_balance = inflows[inflow_id].remaining_balance + delta
                txn.update(LedgerCollection.INFLOWS, inflow_id, balance_fields(new_balance))
            txn.set(LedgerCollection.OUTFLOWS, outflow_id, revised.to_document())

            return RevisedOutflow(
                previous=previous,
                outflow=revised,
                adjustments=adjustments,
            )

        revision = await self._store.transactionally(revise)
        logger.info(
            "outflow_revised",
            outflow_id=outflow_id,
            adjustments={key: str(value) for key, value in revision.adjustments.items()},
        )
        return revision

    async def reverse_outflow(self, outflow_id: str) -> Optional[ReversedOutflow]:
        """
        Delete an outflow and give its amount back to its inflow.

        Returns None if the outflow was already deleted. A missing inflow
        is not fatal: the outflow is still deleted and the gap is logged.
        """

        async def reverse(txn: LedgerTransaction) -> Optional[ReversedOutflow]:
            document = await txn.get(LedgerCollection.OUTFLOWS, outflow_id)
            if document is None:
                return None
            outflow = Outflow.from_document(document)

            inflow_document = await txn.get(LedgerCollection.INFLOWS, str(outflow.inflow_id))
            if inflow_document is not None:
                inflow = Inflow.from_document(inflow_document)
                txn.update(
                    LedgerCollection.INFLOWS,
                    inflow.doc_id,
                    balance_fields(inflow.remaining_balance + outflow.amount),
                )
            txn.delete(LedgerCollection.OUTFLOWS, outflow_id)

            return ReversedOutflow(outflow=outflow, refunded=inflow_document is not None)

        reversal = await self._store.transactionally(reverse)
        if reversal is None:
            logger.info("outflow_already_deleted", outflow_id=outflow_id)
        elif not reversal.refunded:
            logger.warning(
                "reversal_without_source",
                outflow_id=outflow_id,
                inflow_id=str(reversal.outflow.inflow_id),
                amount=str(reversal.outflow.amount),
            )
        return reversal

    async def recalculate_balance(self, inflow_id: str) -> RecalculationResult:
        """
        Rebuild an inflow's balance from every outflow that references it.

        Settlement payments count like any other outflow. Running it twice
        with no writes in between gives the same balance.

        Raises:
            NotFoundError: If the inflow doesn't exist
        """
        inflow_id = str(inflow_id)

        async def recalculate(txn: LedgerTransaction) -> RecalculationResult:
            inflow = await read_inflow(txn, inflow_id)
            documents = await txn.query(LedgerCollection.OUTFLOWS, inflow_id=inflow_id)
            total_out = sum(
                (Outflow.from_document(document).amount for document in documents),
                ZERO,
            )
            new_balance = inflow.amount - total_out
            txn.update(LedgerCollection.INFLOWS, inflow_id, balance_fields(new_balance))

            return RecalculationResult(
                inflow_id=inflow.id,
                total_out=total_out,
                previous_balance=inflow.remaining_balance,
                new_balance=new_balance,
            )

        result = await self._store.transactionally(recalculate)
        if result.drift != 0:
            logger.warning(
                "balance_drift_repaired",
                inflow_id=inflow_id,
                previous_balance=str(result.previous_balance),
                new_balance=str(result.new_balance),
            )
        return result
