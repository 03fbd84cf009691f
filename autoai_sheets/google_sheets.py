from __future__ import annotations

from typing import Callable, Dict, List, Optional

import logging
import ssl
import time

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import Resource
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest
from httplib2 import HttpLib2Error

from .config import SheetsConfig
from .models import SheetSnapshot
from .sheet_reader import SheetStructureError, build_snapshot

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/documents",
]
DOCUMENT_URL_TEMPLATE = "https://docs.google.com/document/d/{document_id}/edit"

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_MAX_RETRY_ATTEMPTS = 4
_INITIAL_BACKOFF_SECONDS = 1.0
_MAX_BACKOFF_SECONDS = 8.0
_RETRYABLE_EXCEPTIONS = (ssl.SSLEOFError, HttpLib2Error)
_SPLIT_LOOKBACK = 1000


def split_cell_value(text: str, limit: int, lookback: int = _SPLIT_LOOKBACK) -> List[str]:
    """Cut ``text`` into chunks of at most ``limit`` characters.

    Each cut prefers the last line break, then the last space, within ``lookback``
    characters before the hard limit. The separator stays at the end of the earlier
    chunk, so ``"".join(chunks) == text``.
    """

    if limit < 1:
        raise ValueError("limit must be positive")

    chunks: List[str] = []
    start = 0
    while len(text) - start > limit:
        end = start + limit
        window_start = max(start + 1, end - lookback)
        cut = text.rfind("\n", window_start, end)
        if cut == -1:
            cut = text.rfind(" ", window_start, end)
        cut = end if cut == -1 else cut + 1
        chunks.append(text[start:cut])
        start = cut
    chunks.append(text[start:])
    return chunks


def quote_sheet_title(title: str) -> str:
    escaped = title.replace("'", "''")
    return f"'{escaped}'"


class GoogleSheetsClient:
    """Thin wrapper around the Google Sheets API for the sheet being processed.

    Report documents are created through the Docs API with the same service account.
    """

    def __init__(self, conf: SheetsConfig, max_cell_chars: int = 50000) -> None:
        self._conf = conf
        self._max_cell_chars = max_cell_chars
        self._service: Resource | None = None
        self._docs_service: Resource | None = None
        self._sheet_title: Optional[str] = conf.sheet_name

    @property
    def spreadsheet_id(self) -> str:
        return self._conf.spreadsheet_id or ""

    @property
    def sheet_gid(self) -> Optional[int]:
        return self._conf.sheet_gid

    def _credentials(self) -> Credentials:
        return Credentials.from_service_account_file(str(self._conf.credentials_file), scopes=SCOPES)

    def _service_client(self) -> Resource:
        if self._service is None:
            self._service = build("sheets", "v4", credentials=self._credentials())
        return self._service

    def _docs_client(self) -> Resource:
        if self._docs_service is None:
            self._docs_service = build("docs", "v1", credentials=self._credentials())
        return self._docs_service

    # Reading -----------------------------------------------------------------
    def sheet_title(self) -> str:
        """Resolve the tab title from the configured gid (first tab when none is given)."""

        if self._sheet_title:
            return self._sheet_title

        def _build_request() -> HttpRequest:
            service = self._service_client()
            return service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields="sheets.properties(sheetId,title)",
            )

        result = self._execute_with_retry(_build_request, operation="fetch sheet metadata")
        sheets = [sheet.get("properties", {}) for sheet in result.get("sheets", [])]
        if not sheets:
            raise SheetStructureError(f"Spreadsheet {self.spreadsheet_id} has no sheets")

        gid = self._conf.sheet_gid
        if gid is None:
            self._sheet_title = sheets[0]["title"]
        else:
            matches = [props["title"] for props in sheets if props.get("sheetId") == gid]
            if not matches:
                raise SheetStructureError(
                    f"No sheet with gid={gid} in spreadsheet {self.spreadsheet_id}"
                )
            self._sheet_title = matches[0]
        LOGGER.debug("Resolved sheet title %r", self._sheet_title)
        return self._sheet_title

    def fetch_values(self) -> List[List[str]]:
        """Load all values of the configured sheet."""

        title = self.sheet_title()

        def _build_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .get(spreadsheetId=self.spreadsheet_id, range=quote_sheet_title(title))
            )

        result = self._execute_with_retry(_build_request, operation="fetch sheet values")
        return result.get("values", [])

    def read_sheet(self) -> SheetSnapshot:
        return build_snapshot(self.fetch_values())

    # Writing -----------------------------------------------------------------
    def write_cell(self, cell_range: str, value: str) -> dict:
        """Write one value into an A1 range of the configured sheet."""

        target_range = f"{quote_sheet_title(self.sheet_title())}!{cell_range}"

        def _update_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=self.spreadsheet_id,
                    range=target_range,
                    valueInputOption="RAW",
                    body={"values": [[value]]},
                )
            )

        return self._execute_with_retry(_update_request, operation=f"write {cell_range}")

    def write_value(self, column: str, row: int, value: str) -> List[str]:
        """Write ``value`` at ``column``/``row``, spilling oversized text into the rows below.

        Returns the ranges that were written.
        """

        chunks = split_cell_value(value, self._max_cell_chars)
        if len(chunks) == 1:
            self.write_cell(f"{column}{row}", value)
            return [f"{column}{row}"]

        LOGGER.warning(
            "Value for %s%s has %s characters; writing %s cells down to %s%s",
            column,
            row,
            len(value),
            len(chunks),
            column,
            row + len(chunks) - 1,
        )
        updates = {f"{column}{row + offset}": chunk for offset, chunk in enumerate(chunks)}
        self.batch_update(updates)
        return list(updates)

    def batch_update(self, updates: Dict[str, str]) -> None:
        """Write several single-cell A1 ranges in one request."""

        if not updates:
            return

        title = quote_sheet_title(self.sheet_title())
        data = [
            {"range": f"{title}!{cell_range}", "majorDimension": "ROWS", "values": [[value]]}
            for cell_range, value in updates.items()
        ]

        def _batch_update_request() -> HttpRequest:
            service = self._service_client()
            return (
                service.spreadsheets()
                .values()
                .batchUpdate(
                    spreadsheetId=self.spreadsheet_id,
                    body={"valueInputOption": "RAW", "data": data},
                )
            )

        self._execute_with_retry(_batch_update_request, operation="batch update cells")

    # Documents ---------------------------------------------------------------
    def create_document(self, title: str, text: str) -> str:
        """Create a Google Docs document holding ``text`` and return its URL."""

        def _create_request() -> HttpRequest:
            return self._docs_client().documents().create(body={"title": title})

        document = self._execute_with_retry(_create_request, operation="create document")
        document_id = document["documentId"]

        if text:
            def _insert_request() -> HttpRequest:
                return self._docs_client().documents().batchUpdate(
                    documentId=document_id,
                    body={"requests": [{"insertText": {"location": {"index": 1}, "text": text}}]},
                )

            self._execute_with_retry(_insert_request, operation="write document body")

        LOGGER.info("Created document '%s' (%s)", title, document_id)
        return DOCUMENT_URL_TEMPLATE.format(document_id=document_id)

    # Helpers -----------------------------------------------------------------
    def build_cell_url(self, column: str, row: int) -> str:
        """Create a direct Google Sheets URL pointing to a specific cell."""

        gid = self._conf.sheet_gid
        gid_part = f"#gid={gid}&" if gid is not None else "#"
        return (
            f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}/edit"
            f"{gid_part}range={column}{row}"
        )

    # Internal ----------------------------------------------------------------
    def _reset_service(self) -> None:
        # A broken connection can poison the cached discovery client.
        self._service = None
        self._docs_service = None

    @staticmethod
    def _is_transient(exc: Exception) -> bool:
        if isinstance(exc, _RETRYABLE_EXCEPTIONS):
            return True
        return isinstance(exc, HttpError) and getattr(exc.resp, "status", None) in _RETRYABLE_STATUS_CODES

    def _execute_with_retry(
        self,
        request_builder: Callable[[], HttpRequest],
        *,
        operation: str,
    ) -> dict:
        """Run a Sheets request, retrying quota, server and connection errors with backoff."""

        delay = _INITIAL_BACKOFF_SECONDS
        attempt = 1
        while True:
            try:
                return request_builder().execute()
            except (HttpError, *_RETRYABLE_EXCEPTIONS) as exc:
                if not self._is_transient(exc) or attempt >= _MAX_RETRY_ATTEMPTS:
                    raise
                LOGGER.warning(
                    "Sheets %s failed (%s), attempt %s of %s; next try in %.1fs",
                    operation,
                    exc,
                    attempt,
                    _MAX_RETRY_ATTEMPTS,
                    delay,
                )

            self._reset_service()
            time.sleep(delay)
            delay = min(delay * 2, _MAX_BACKOFF_SECONDS)
            attempt += 1
