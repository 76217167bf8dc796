"""
Reactive Ledger Cache

An in-memory mirror of the three ledger collections, kept current by the
store's change notifications. The dashboard reads from here; all writes
still go through the engines and the store.

The cache only ever holds committed state: it is refreshed from the
snapshot the store pushes after each commit, never patched locally.
"""

from typing import Callable, Optional, Type

import structlog

from potledger.models.records import (
    Inflow,
    LedgerCollection,
    LedgerRecord,
    Outflow,
    Overdraft,
)
from potledger.services.storage.interface import Document, LedgerStoreInterface


logger = structlog.get_logger(__name__)

RECORD_TYPES: dict[LedgerCollection, Type[LedgerRecord]] = {
    LedgerCollection.INFLOWS: Inflow,
    LedgerCollection.OUTFLOWS: Outflow,
    LedgerCollection.OVERDRAFTS: Overdraft,
}


class LedgerCache:
    """Typed, subscription-fed view of one organization's ledger."""

    def __init__(self, store: LedgerStoreInterface):
        self._store = store
        self._records: dict[LedgerCollection, dict[str, LedgerRecord]] = {
            collection: {} for collection in LedgerCollection
        }
        self._unsubscribers: list[Callable[[], None]] = []

    def start(self) -> None:
        """Subscribe to every collection. Safe to call more than once."""
        if self._unsubscribers:
            return
        for collection in LedgerCollection:
            self._unsubscribers.append(
                self._store.subscribe(collection, self._on_snapshot)
            )

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_snapshot(
        self,
        collection: LedgerCollection,
        documents: list[Document],
    ) -> None:
        record_type = RECORD_TYPES[collection]
        records: dict[str, LedgerRecord] = {}
        for document in documents:
            try:
                record = record_type.from_document(document)
            except ValueError as e:
                # Hand-edited rows can be malformed; show the rest
                logger.warning(
                    "cache_record_skipped",
                    collection=collection.value,
                    doc_id=document.get("id"),
                    error=str(e),
                )
                continue
            records[record.doc_id] = record
        self._records[collection] = records

    def _sorted(self, collection: LedgerCollection) -> list:
        # Newest first, like the ledger views
        return sorted(
            self._records[collection].values(),
            key=lambda record: record.date,
            reverse=True,
        )

    @property
    def inflows(self) -> list[Inflow]:
        return self._sorted(LedgerCollection.INFLOWS)

    @property
    def outflows(self) -> list[Outflow]:
        return self._sorted(LedgerCollection.OUTFLOWS)

    @property
    def overdrafts(self) -> list[Overdraft]:
        return self._sorted(LedgerCollection.OVERDRAFTS)

    def get_inflow(self, inflow_id: str) -> Optional[Inflow]:
        return self._records[LedgerCollection.INFLOWS].get(str(inflow_id))

    def get_outflow(self, outflow_id: str) -> Optional[Outflow]:
        return self._records[LedgerCollection.OUTFLOWS].get(str(outflow_id))

    def get_overdraft(self, overdraft_id: str) -> Optional[Overdraft]:
        return self._records[LedgerCollection.OVERDRAFTS].get(str(overdraft_id))
