"""
In-Memory Storage Implementation

Keeps the ledger as an arena of documents keyed by id, one dict per
collection. Used by the tests and by demo mode when Google Sheets is not
configured.

Transactions are serialized with an asyncio.Lock. Writes are staged on a
copy of the affected collections and swapped in only once every write has
been applied, so a failing commit leaves nothing behind.
"""

import asyncio
import copy
from typing import Awaitable, Callable, Optional
from uuid import UUID

from potledger.models.audit import AuditEvent
from potledger.models.records import LedgerCollection, LedgerRecord
from potledger.services.storage.interface import (
    AuditStorageInterface,
    BufferedTransaction,
    ChangeListener,
    Document,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
    SubscriptionRegistry,
    T,
)


class InMemoryLedgerStore(LedgerStoreInterface):
    """Dict-backed ledger store with all-or-nothing transactions."""

    def __init__(self):
        self._collections: dict[LedgerCollection, dict[str, Document]] = {
            collection: {} for collection in LedgerCollection
        }
        self._lock = asyncio.Lock()
        self._subscriptions = SubscriptionRegistry()

    def seed(self, *records: LedgerRecord) -> None:
        """Put records straight into the store, bypassing the engines."""
        for record in records:
            self._collections[record.collection][record.doc_id] = record.to_document()

    async def _read(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        document = self._collections[collection].get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def get(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        return await self._read(collection, doc_id)

    async def list_documents(self, collection: LedgerCollection) -> list[Document]:
        return copy.deepcopy(list(self._collections[collection].values()))

    async def transactionally(
        self,
        fn: Callable[[LedgerTransaction], Awaitable[T]],
    ) -> T:
        async with self._lock:
            txn = BufferedTransaction(self._read, self.query)
            result = await fn(txn)
            self._commit(txn)

        for collection in txn.touched_collections:
            self._subscriptions.notify(
                collection,
                await self.list_documents(collection),
            )
        return result

    def _commit(self, txn: BufferedTransaction) -> None:
        staged = {
            collection: dict(self._collections[collection])
            for collection in txn.touched_collections
        }

        for op, collection, doc_id, data in txn.writes:
            documents = staged[collection]
            if op == "set":
                documents[doc_id] = copy.deepcopy(data)
            elif op == "update":
                if doc_id not in documents:
                    raise NotFoundError(collection, doc_id)
                merged = dict(documents[doc_id])
                merged.update(copy.deepcopy(data))
                documents[doc_id] = merged
            elif op == "delete":
                documents.pop(doc_id, None)

        self._collections.update(staged)

    def subscribe(
        self,
        collection: LedgerCollection,
        listener: ChangeListener,
    ) -> Callable[[], None]:
        unsubscribe = self._subscriptions.add(collection, listener)
        listener(collection, copy.deepcopy(list(self._collections[collection].values())))
        return unsubscribe


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit list, for tests and demo mode."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            event for event in self._events
            if event.entity_type == entity_type and event.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
