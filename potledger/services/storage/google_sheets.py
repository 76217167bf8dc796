"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the initial storage backend because:
1. The bookkeeper can view the ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for one small business)
- No native transactions. We serialize commits in-process, re-read every
  document the transaction read and refuse to commit if any changed
  (TransactionConflictError), and check that updates target existing rows
  before writing anything. An API failure halfway through the writes can
  still leave a partial commit; recalculate_balance repairs the balances.
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to a document database later without changing the ledger engines.
"""

import asyncio
import json
from typing import Awaitable, Callable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from potledger.config import get_settings
from potledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from potledger.models.records import LedgerCollection
from potledger.services.storage.interface import (
    AuditStorageInterface,
    BufferedTransaction,
    ChangeListener,
    ConnectionError,
    Document,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
    StorageError,
    SubscriptionRegistry,
    matches,
    T,
    TransactionConflictError,
)


logger = structlog.get_logger(__name__)


# Column mappings for the ledger sheets
INFLOW_COLUMNS = [
    "id",
    "date",
    "source",
    "product",
    "amount",
    "remaining_balance",
    "description",
    "payment_method",
    "account_number",
    "bank_account_name",
    "currency",
    "exchange_rate",
    "notes",
]

OUTFLOW_COLUMNS = [
    "id",
    "date",
    "purpose",
    "category",
    "amount",
    "seller",
    "inflow_id",
    "expense_name",
    "notes",
    "payment_method",
    "account_number",
]

OVERDRAFT_COLUMNS = [
    "id",
    "date",
    "purpose",
    "amount",
    "seller",
    "is_settled",
    "settled_with_inflow_id",
    "notes",
    "created_at",
]

LEDGER_COLUMNS = {
    LedgerCollection.INFLOWS: INFLOW_COLUMNS,
    LedgerCollection.OUTFLOWS: OUTFLOW_COLUMNS,
    LedgerCollection.OVERDRAFTS: OVERDRAFT_COLUMNS,
}

BOOL_COLUMNS = {"is_settled"}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def document_to_row(collection: LedgerCollection, document: Document) -> list[str]:
    """Convert a store document to a spreadsheet row. Absent fields are blank."""
    row = []
    for column in LEDGER_COLUMNS[collection]:
        value = document.get(column)
        row.append("" if value is None else str(value))
    return row


def row_to_document(collection: LedgerCollection, row: list) -> Document:
    """Convert a spreadsheet row to a store document. Blank cells are left out."""
    document: Document = {}
    for index, column in enumerate(LEDGER_COLUMNS[collection]):
        value = row[index] if index < len(row) else ""
        if value == "":
            continue
        if column in BOOL_COLUMNS:
            document[column] = value.lower() == "true"
        else:
            document[column] = value
    return document


def _by_id(documents: list[Document]) -> dict[str, Document]:
    return {document.get("id"): document for document in documents}


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self, collection: LedgerCollection) -> gspread.Worksheet:
        """Get or create the worksheet holding a ledger collection."""
        titles = {
            LedgerCollection.INFLOWS: self._settings.inflows_sheet_name,
            LedgerCollection.OUTFLOWS: self._settings.outflows_sheet_name,
            LedgerCollection.OVERDRAFTS: self._settings.overdrafts_sheet_name,
        }
        return self._get_or_create_sheet(
            titles[collection],
            LEDGER_COLUMNS[collection],
            rows=1000,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    Each collection is a worksheet with one document per row.
    Change notifications are delivered for commits made through this
    instance; edits made directly in the spreadsheet are not observed.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._lock = asyncio.Lock()
        self._subscriptions = SubscriptionRegistry()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _load_rows(self, collection: LedgerCollection) -> list[list]:
        """All data rows of a collection (header excluded)."""
        sheet = self._client.get_ledger_sheet(collection)
        return sheet.get_all_values()[1:]

    def _locate(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> tuple[Optional[int], Optional[Document]]:
        """Find a document. Returns (sheet row number, document)."""
        # Sheet row 1 is the header
        for row_number, row in enumerate(self._load_rows(collection), start=2):
            if row and row[0] == doc_id:
                return row_number, row_to_document(collection, row)
        return None, None

    async def _read(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        try:
            _, document = self._locate(collection, doc_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {collection.value}: {e}")
        return document

    async def get(
        self,
        collection: LedgerCollection,
        doc_id: str,
    ) -> Optional[Document]:
        return await self._read(collection, doc_id)

    async def list_documents(self, collection: LedgerCollection) -> list[Document]:
        try:
            rows = self._load_rows(collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list {collection.value}: {e}")
        return [
            row_to_document(collection, row)
            for row in rows
            if row and row[0]  # Skip empty rows
        ]

    async def transactionally(
        self,
        fn: Callable[[LedgerTransaction], Awaitable[T]],
    ) -> T:
        async with self._lock:
            txn = BufferedTransaction(self._read, self.query)
            result = await fn(txn)
            try:
                self._commit(txn)
            except StorageError:
                raise
            except Exception as e:
                raise StorageError(f"Failed to commit transaction: {e}")

        for collection in txn.touched_collections:
            self._subscriptions.notify(
                collection,
                await self.list_documents(collection),
            )
        return result

    def _check_unchanged(self, txn: BufferedTransaction) -> None:
        """Refuse to commit if anything the transaction read has changed."""
        for (collection, doc_id), seen in txn.reads.items():
            _, current = self._locate(collection, doc_id)
            if current != seen:
                raise TransactionConflictError(
                    f"{collection.value} document {doc_id} changed during the transaction"
                )
        for collection, equals, seen in txn.queries:
            current = [
                row_to_document(collection, row)
                for row in self._load_rows(collection)
                if row and row[0]
            ]
            current = [document for document in current if matches(document, equals)]
            if _by_id(current) != _by_id(seen):
                raise TransactionConflictError(
                    f"{collection.value} matching {equals} changed during the transaction"
                )

    def _check_update_targets(self, txn: BufferedTransaction) -> None:
        """Fail before writing anything if an update targets a missing row."""
        present = {
            collection: {row[0] for row in self._load_rows(collection) if row}
            for collection in txn.touched_collections
        }
        for op, collection, doc_id, _ in txn.writes:
            if op == "set":
                present[collection].add(doc_id)
            elif op == "delete":
                present[collection].discard(doc_id)
            elif doc_id not in present[collection]:
                raise NotFoundError(collection, doc_id)

    def _commit(self, txn: BufferedTransaction) -> None:
        if not txn.writes:
            return
        self._check_unchanged(txn)
        self._check_update_targets(txn)

        for op, collection, doc_id, data in txn.writes:
            sheet = self._client.get_ledger_sheet(collection)
            row_number, current = self._locate(collection, doc_id)

            if op == "delete":
                if row_number is not None:
                    sheet.delete_rows(row_number)
                continue

            if op == "update":
                document = dict(current or {})
                document.update(data)
            else:
                document = data
            row = document_to_row(collection, document)

            if row_number is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                sheet.update(range_name=f"A{row_number}", values=[row], raw=True)

    def subscribe(
        self,
        collection: LedgerCollection,
        listener: ChangeListener,
    ) -> Callable[[], None]:
        unsubscribe = self._subscriptions.add(collection, listener)
        listener(
            collection,
            [
                row_to_document(collection, row)
                for row in self._load_rows(collection)
                if row and row[0]
            ],
        )
        return unsubscribe


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""

        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_row(self, row: list) -> None:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._append_row(event.to_sheets_row())
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception as e:
                logger.warning("audit_row_unreadable", error=str(e), event_id=row[0])
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                event for event in self._load_events()
                if event.entity_type == entity_type and event.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
