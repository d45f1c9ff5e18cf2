"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets can act as the hosted document store because:
1. The owner can inspect registration records directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (one row per user is fine)
- No transactions (merge is read-modify-write of a single row)
- Limited query capabilities (we filter in Python)

Each collection is a worksheet; each document is a row of
[id, updated_at, data_json]. Merge semantics are applied to the decoded
JSON fields, so unrelated fields are never clobbered.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from fortnight.config import GoogleSheetsSettings, get_settings
from fortnight.models.audit import AuditEvent, AuditEventType, AuditSeverity
from fortnight.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DocumentStoreInterface,
    StorageError,
)


# Column mappings for document sheets
DOCUMENT_COLUMNS = [
    "id",
    "updated_at",
    "data_json",
]

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
    "error_code",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

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

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a collection."""
        return self._get_or_create_sheet(collection, DOCUMENT_COLUMNS, rows=1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    Documents are stored as rows with their fields JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _find_row(
        all_rows: list[list[str]],
        doc_id: str,
    ) -> tuple[Optional[int], Optional[list[str]]]:
        """Return (1-based sheet row index, row) for a document id."""
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if row and row[0] == doc_id:
                return idx, row
        return None, None

    @staticmethod
    def _decode(row: list[str]) -> dict[str, Any]:
        try:
            data_json = row[2]
        except IndexError:
            return {}
        return json.loads(data_json) if data_json else {}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get_document(
        self,
        collection: str,
        doc_id: str,
    ) -> Optional[dict[str, Any]]:
        """Retrieve a document by id."""
        try:
            sheet = self._client.get_collection_sheet(collection)
            _, row = self._find_row(sheet.get_all_values(), doc_id)
            if row is None:
                return None
            return self._decode(row)
        except Exception as e:
            raise StorageError(f"Failed to get document {collection}/{doc_id}: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def set_document(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        merge: bool = True,
    ) -> bool:
        """Write a document, merging into the existing fields when asked."""
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, row = self._find_row(sheet.get_all_values(), doc_id)

            data = self._decode(row) if (merge and row is not None) else {}
            data.update(fields)
            new_row = [
                doc_id,
                datetime.now(timezone.utc).isoformat(),
                json.dumps(data, default=str),
            ]

            if idx is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{idx}:C{idx}",
                    values=[new_row],
                    value_input_option="RAW",
                )
            return True
        except Exception as e:
            raise StorageError(f"Failed to set document {collection}/{doc_id}: {e}")


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
            event_id=safe_get(0),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=safe_get(6) or None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _load_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except (ValueError, json.JSONDecodeError):
                    continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._load_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
            events.sort(key=lambda e: e.timestamp)
            return events
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._load_events()
            # Sort newest first
            events.sort(key=lambda e: e.timestamp, reverse=True)
            return events[:limit]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
