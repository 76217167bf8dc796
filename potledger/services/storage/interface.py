"""
Abstract Storage Interface

DESIGN DECISION: The ledger engines talk to storage only through this
interface. This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep balance rules decoupled from storage implementation

The interface mirrors a transactional document store: documents are
JSON-safe dicts keyed by id inside a named collection. Balance changes
must happen inside transactionally() so that reading a balance, computing
the new one and writing it (plus any dependent records) is one unit.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from potledger.models.audit import AuditEvent
from potledger.models.records import LedgerCollection


Document = dict[str, Any]
ChangeListener = Callable[[LedgerCollection, list[Document]], None]

T = TypeVar("T")

logger = structlog.get_logger(__name__)


def matches(document: Document, equals: dict[str, Any]) -> bool:
    """True if every field=value pair holds on the stored document."""
    return all(document.get(field) == value for field, value in equals.items())


class LedgerTransaction(ABC):
    """
    Handle passed to the function run by transactionally().

    Reads are awaited and see committed state. Writes are buffered and
    applied all-or-nothing when the function returns. All reads must
    happen before the first write.
    """

    @abstractmethod
    async def get(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        """
        Read a document inside the transaction.

        Returns:
            The document if found, None otherwise
        """
        pass

    @abstractmethod
    async def query(
        self,
        collection: LedgerCollection,
        **equals: Any,
    ) -> list[Document]:
        """Read every document whose fields equal the given values."""
        pass

    @abstractmethod
    def set(
        self,
        collection: LedgerCollection,
        doc_id: str,
        document: Document,
    ) -> None:
        """Create or replace a document."""
        pass

    @abstractmethod
    def update(
        self,
        collection: LedgerCollection,
        doc_id: str,
        fields: Document,
    ) -> None:
        """
        Merge fields into an existing document.

        The commit fails with NotFoundError if the document is gone.
        """
        pass

    @abstractmethod
    def delete(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> None:
        """Delete a document. Deleting a missing document is allowed."""
        pass


class BufferedTransaction(LedgerTransaction):
    """
    Transaction handle that records reads and buffers writes.

    Stores build one of these per transactionally() call, run the user
    function against it, then apply `writes` themselves.
    """

    def __init__(
        self,
        reader: Callable[[LedgerCollection, str], Awaitable[Optional[Document]]],
        querier: Callable[..., Awaitable[list[Document]]],
    ):
        self._reader = reader
        self._querier = querier
        self.reads: dict[tuple[LedgerCollection, str], Optional[Document]] = {}
        self.queries: list[tuple[LedgerCollection, dict[str, Any], list[Document]]] = []
        self.writes: list[tuple[str, LedgerCollection, str, Optional[Document]]] = []

    def _check_reads_allowed(self) -> None:
        if self.writes:
            raise StorageError("Transactions must do all reads before any write")

    async def get(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        self._check_reads_allowed()
        document = await self._reader(collection, doc_id)
        self.reads[(collection, doc_id)] = document
        return dict(document) if document is not None else None

    async def query(
        self,
        collection: LedgerCollection,
        **equals: Any,
    ) -> list[Document]:
        self._check_reads_allowed()
        documents = await self._querier(collection, **equals)
        self.queries.append((collection, dict(equals), documents))
        return [dict(document) for document in documents]

    def set(
        self,
        collection: LedgerCollection,
        doc_id: str,
        document: Document,
    ) -> None:
        self.writes.append(("set", collection, doc_id, dict(document)))

    def update(
        self,
        collection: LedgerCollection,
        doc_id: str,
        fields: Document,
    ) -> None:
        self.writes.append(("update", collection, doc_id, dict(fields)))

    def delete(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> None:
        self.writes.append(("delete", collection, doc_id, None))

    @property
    def touched_collections(self) -> frozenset[LedgerCollection]:
        return frozenset(collection for _, collection, _, _ in self.writes)


class SubscriptionRegistry:
    """Per-collection change listeners."""

    def __init__(self):
        self._listeners: dict[LedgerCollection, list[ChangeListener]] = {
            collection: [] for collection in LedgerCollection
        }

    def add(
        self,
        collection: LedgerCollection,
        listener: ChangeListener,
    ) -> Callable[[], None]:
        self._listeners[collection].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[collection]:
                self._listeners[collection].remove(listener)

        return unsubscribe

    def notify(
        self,
        collection: LedgerCollection,
        documents: list[Document],
    ) -> None:
        for listener in list(self._listeners[collection]):
            try:
                listener(collection, documents)
            except Exception as e:
                # A broken view must not undo a committed write
                logger.error(
                    "change_listener_failed",
                    collection=collection.value,
                    error=str(e),
                )


class LedgerStoreInterface(ABC):
    """
    Abstract interface for the ledger document store.

    Any storage implementation (Google Sheets, Firestore, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        """
        Read a committed document outside any transaction.

        Returns:
            The document if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_documents(self, collection: LedgerCollection) -> list[Document]:
        """Return every document in a collection."""
        pass

    async def query(
        self,
        collection: LedgerCollection,
        **equals: Any,
    ) -> list[Document]:
        """
        Return documents whose fields equal all the given values.

        Args:
            collection: Collection to search
            **equals: field=value pairs, compared on the stored form

        Returns:
            Matching documents (unordered)
        """
        documents = await self.list_documents(collection)
        return [document for document in documents if matches(document, equals)]

    @abstractmethod
    async def transactionally(
        self,
        fn: Callable[[LedgerTransaction], Awaitable[T]],
    ) -> T:
        """
        Run fn inside a transaction and commit its writes atomically.

        If fn raises, nothing is written and the exception propagates.

        Raises:
            NotFoundError: If an update targets a missing document
            TransactionConflictError: If a document read by fn changed
                before commit
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        collection: LedgerCollection,
        listener: ChangeListener,
    ) -> Callable[[], None]:
        """
        Register for change notifications on a collection.

        The listener is called with the full committed contents of the
        collection immediately and after every commit that touches it.

        Returns:
            A function that removes the listener
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific record.

        Args:
            entity_type: Type of record (e.g., 'inflow', 'overdraft')
            entity_id: The record's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Record not found in storage."""

    def __init__(self, collection: LedgerCollection, doc_id: str, message: Optional[str] = None):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(message or f"{collection.value[:-1].capitalize()} not found: {doc_id}")


class DuplicateError(StorageError):
    """Record already exists (duplicate ID)."""

    def __init__(self, collection: LedgerCollection, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection.value[:-1].capitalize()} already exists: {doc_id}")


class TransactionConflictError(StorageError):
    """
    A document changed between being read and the commit.

    Safe to retry from the start; the store does not retry on its own.
    """
    retryable = True


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
