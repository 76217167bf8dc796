"""
Overdraft Engine

Lifecycle of liabilities: manual creation, edits, settlement from an
inflow's spare balance, and deletion with refund of settlement payments.

Settlement debits the inflow, records a synthetic outflow and reduces the
overdraft in one transaction, so a failure never leaves a payment without
its debt reduction.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

import structlog

from potledger.config import LedgerSettings, get_settings
from potledger.engine.balance import (
    BalanceEngine,
    ZERO,
    balance_fields,
    merge_edit,
    read_inflow,
)
from potledger.engine.errors import (
    InsufficientFundsError,
    LedgerValidationError,
    OverdraftAlreadySettledError,
)
from potledger.models.records import (
    DeletedOverdraft,
    LedgerCollection,
    Outflow,
    Overdraft,
    SettlementResult,
)
from potledger.services.storage.interface import (
    DuplicateError,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
)


logger = structlog.get_logger(__name__)

# Owned by settlement, not by the edit form
PROTECTED_FIELDS = frozenset({"id", "is_settled", "settled_with_inflow_id", "created_at"})


def settlement_payment(debt: Decimal, available: Decimal) -> Decimal:
    """Pay as much of the debt as the available balance allows."""
    return min(debt, available)


class OverdraftEngine:
    """
    Creates, settles and deletes overdrafts.

    Deletion reverses settlement outflows through the BalanceEngine so the
    paying inflow gets its money back.
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        balance_engine: Optional[BalanceEngine] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._balance = balance_engine or BalanceEngine(store, self._settings)

    async def _read_overdraft(self, txn: LedgerTransaction, overdraft_id: str) -> Overdraft:
        document = await txn.get(LedgerCollection.OVERDRAFTS, overdraft_id)
        if document is None:
            raise NotFoundError(LedgerCollection.OVERDRAFTS, overdraft_id)
        return Overdraft.from_document(document)

    async def create_ad_hoc_overdraft(self, overdraft: Overdraft) -> Overdraft:
        """Log a liability directly. No inflow balance changes."""

        async def create(txn: LedgerTransaction) -> Overdraft:
            if await txn.get(LedgerCollection.OVERDRAFTS, overdraft.doc_id) is not None:
                raise DuplicateError(LedgerCollection.OVERDRAFTS, overdraft.doc_id)
            txn.set(LedgerCollection.OVERDRAFTS, overdraft.doc_id, overdraft.to_document())
            return overdraft

        created = await self._store.transactionally(create)
        logger.info(
            "overdraft_added",
            overdraft_id=created.doc_id,
            seller=created.seller,
            amount=str(created.amount),
        )
        return created

    async def update_overdraft(self, overdraft_id: str, changes: dict[str, Any]) -> Overdraft:
        """
        Edit a stored overdraft's details.

        The changes are merged over the record read in the same
        transaction, so settlement state is never taken from a stale copy.
        A settled overdraft keeps its zero amount; only its details change.

        Raises:
            NotFoundError: If the overdraft doesn't exist
            LedgerValidationError: If an open overdraft's amount isn't positive
        """
        overdraft_id = str(overdraft_id)

        async def update(txn: LedgerTransaction) -> Overdraft:
            stored = await self._read_overdraft(txn, overdraft_id)
            edits = {
                field: value for field, value in changes.items()
                if field not in PROTECTED_FIELDS
            }
            if stored.is_settled:
                edits.pop("amount", None)
            elif "amount" in edits and edits["amount"] <= 0:
                raise LedgerValidationError(message="Amount must be greater than zero")
            updated = merge_edit(stored, edits)
            txn.set(LedgerCollection.OVERDRAFTS, overdraft_id, updated.to_document())
            return updated

        updated = await self._store.transactionally(update)
        logger.info(
            "overdraft_updated",
            overdraft_id=overdraft_id,
            amount=str(updated.amount),
            is_settled=updated.is_settled,
        )
        return updated

    async def settle_overdraft(
        self,
        overdraft_id: str,
        inflow_id: str,
        today: Optional[dt.date] = None,
    ) -> SettlementResult:
        """
        Pay down an overdraft from an inflow's spare balance.

        Pays min(debt, balance). A full payment marks the overdraft settled
        with amount 0; a partial one leaves the rest outstanding.

        Raises:
            NotFoundError: If the overdraft or inflow doesn't exist
            OverdraftAlreadySettledError: If there is nothing left to pay
            InsufficientFundsError: If the inflow balance is zero or negative
        """
        overdraft_id = str(overdraft_id)
        inflow_id = str(inflow_id)
        settled_on = today or dt.date.today()

        async def settle(txn: LedgerTransaction) -> SettlementResult:
            overdraft = await self._read_overdraft(txn, overdraft_id)
            if overdraft.is_settled or overdraft.amount <= 0:
                raise OverdraftAlreadySettledError(overdraft_id)

            inflow = await read_inflow(txn, inflow_id)
            available = inflow.remaining_balance
            if available <= 0:
                raise InsufficientFundsError(inflow_id, available)

            payment = settlement_payment(overdraft.amount, available)
            remaining_debt = overdraft.amount - payment
            full = remaining_debt <= 0
            prefix = "Settle: " if full else "Partial Settle: "

            outflow = Outflow(
                date=settled_on,
                purpose=f"{prefix}{overdraft.purpose}",
                category=self._settings.settlement_category,
                amount=payment,
                seller=overdraft.seller,
                inflow_id=inflow.id,
                expense_name=self._settings.settlement_expense_name,
            )
            if full:
                updated = overdraft.model_copy(update={
                    "amount": ZERO,
                    "is_settled": True,
                    "settled_with_inflow_id": inflow.id,
                })
            else:
                updated = overdraft.model_copy(update={"amount": remaining_debt})
            new_balance = available - payment

            txn.update(LedgerCollection.INFLOWS, inflow_id, balance_fields(new_balance))
            txn.set(LedgerCollection.OUTFLOWS, outflow.doc_id, outflow.to_document())
            txn.set(LedgerCollection.OVERDRAFTS, overdraft_id, updated.to_document())

            return SettlementResult(
                payment_amount=payment,
                outflow=outflow,
                overdraft=updated,
                inflow=inflow.model_copy(update={"remaining_balance": new_balance}),
            )

        result = await self._store.transactionally(settle)
        logger.info(
            "overdraft_settled",
            overdraft_id=overdraft_id,
            inflow_id=inflow_id,
            payment_amount=str(result.payment_amount),
            remaining_debt=str(result.overdraft.amount),
        )
        return result

    async def delete_overdraft(self, overdraft_id: str) -> DeletedOverdraft:
        """
        Delete an overdraft, refunding its settlement payment if settled.

        Settlement outflows are found by the settling inflow, the seller and
        the settlement expense name. Each is reversed before the overdraft
        is removed. Finding none is logged, not raised.

        Raises:
            NotFoundError: If the overdraft doesn't exist
        """
        overdraft_id = str(overdraft_id)
        document = await self._store.get(LedgerCollection.OVERDRAFTS, overdraft_id)
        if document is None:
            raise NotFoundError(LedgerCollection.OVERDRAFTS, overdraft_id)
        overdraft = Overdraft.from_document(document)

        refunded: list[Outflow] = []
        if overdraft.is_settled and overdraft.settled_with_inflow_id is not None:
            payments = await self._store.query(
                LedgerCollection.OUTFLOWS,
                inflow_id=str(overdraft.settled_with_inflow_id),
                seller=overdraft.seller,
                expense_name=self._settings.settlement_expense_name,
            )
            for payment in payments:
                reversal = await self._balance.reverse_outflow(payment["id"])
                if reversal is not None:
                    refunded.append(reversal.outflow)

        async def remove(txn: LedgerTransaction) -> None:
            txn.delete(LedgerCollection.OVERDRAFTS, overdraft_id)

        await self._store.transactionally(remove)

        deletion = DeletedOverdraft(overdraft=overdraft, refunded_outflows=refunded)
        if deletion.refund_missing:
            logger.warning(
                "settlement_refund_missing",
                overdraft_id=overdraft_id,
                inflow_id=str(overdraft.settled_with_inflow_id),
                seller=overdraft.seller,
            )
        logger.info(
            "overdraft_deleted",
            overdraft_id=overdraft_id,
            refunded_outflows=len(refunded),
        )
        return deletion
