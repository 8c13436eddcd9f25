"""
Google Sheets Remote Store

DESIGN DECISION: Each logical table is a worksheet whose first row holds the
column names. A non-technical owner can open the spreadsheet and read their
ledger directly.

TRADEOFFS:
- Every query reads the whole worksheet and filters in Python
- No transactions; multi-step writes are ordered by the caller
- Uniqueness constraints are checked here, before appending

The implementation follows the abstract interface, so a hosted relational
database can replace it without touching the engine.
"""

from typing import Any, Optional, Sequence

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from coinflow.config import RemoteStoreSettings, get_settings
from coinflow.services.storage.interface import (
    TABLE_COLUMNS,
    UNIQUE_CONSTRAINTS,
    ConnectionError,
    DuplicateError,
    Order,
    RemoteStoreInterface,
    Row,
    StorageError,
    check_table,
    row_matches,
    unique_key,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[RemoteStoreSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().remote_store

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

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        """Get or create the worksheet backing `table`."""
        if table in self._worksheets:
            return self._worksheets[table]

        spreadsheet = self.get_spreadsheet()
        title = self._settings.sheet_name_for(table)
        columns = TABLE_COLUMNS[table]
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        self._worksheets[table] = sheet
        return sheet


def _to_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


class GoogleSheetsRemoteStore(RemoteStoreInterface):
    """
    Google Sheets implementation of the remote table API.

    Cells are stored as text; empty cells read back as None.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_cells(self, table: str, row: Row) -> list[str]:
        return [_to_cell(row.get(col)) for col in TABLE_COLUMNS[table]]

    def _cells_to_row(self, table: str, cells: list[str]) -> Row:
        # Handle missing trailing columns gracefully
        row = {}
        for index, col in enumerate(TABLE_COLUMNS[table]):
            value = cells[index] if index < len(cells) else ""
            row[col] = value if value != "" else None
        return row

    def _read_rows(self, table: str) -> list[tuple[int, Row]]:
        """Every data row with its 1-based sheet row number."""
        sheet = self._client.get_table_sheet(table)
        all_rows = sheet.get_all_values()[1:]  # Skip header
        return [
            (idx, self._cells_to_row(table, cells))
            for idx, cells in enumerate(all_rows, start=2)
            if cells and cells[0]
        ]

    async def select(
        self,
        table: str,
        filters: dict[str, Any],
        order: Optional[Order] = None,
    ) -> list[Row]:
        """Select rows matching every filter."""
        check_table(table)
        try:
            rows = [row for _, row in self._read_rows(table) if row_matches(row, filters)]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to select from {table}: {e}")

        if order:
            column, descending = order
            rows.sort(key=lambda r: r.get(column) or "", reverse=descending)
        return rows

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def insert(
        self,
        table: str,
        rows: Sequence[Row],
        on_conflict: Optional[Sequence[str]] = None,
    ) -> list[Row]:
        """Append rows, or update the conflicting row when `on_conflict` is set."""
        check_table(table)
        try:
            sheet = self._client.get_table_sheet(table)
            existing = self._read_rows(table)
            stored = []
            for row in rows:
                key = unique_key(table, row, on_conflict)
                match = None
                if key is not None:
                    match = next(
                        (
                            (idx, current)
                            for idx, current in existing
                            if unique_key(table, current, on_conflict) == tuple(
                                _to_cell(v) or None for v in key
                            )
                        ),
                        None,
                    )
                if match is not None:
                    if on_conflict is None:
                        raise DuplicateError(
                            f"Duplicate {table} row for "
                            f"{dict(zip(UNIQUE_CONSTRAINTS[table], key))}"
                        )
                    idx, current = match
                    merged = {
                        **current,
                        **{k: v for k, v in row.items() if k != "id" and v is not None},
                    }
                    sheet.update(
                        f"A{idx}",
                        [self._row_to_cells(table, merged)],
                        value_input_option="RAW",
                    )
                    stored.append(merged)
                    continue
                sheet.append_row(self._row_to_cells(table, row), value_input_option="RAW")
                existing.append((len(existing) + 2, dict(row)))
                stored.append(dict(row))
            return stored
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {table}: {e}")

    async def update(
        self,
        table: str,
        patch: Row,
        filters: dict[str, Any],
    ) -> list[Row]:
        """Rewrite every row matching the filters with `patch` applied."""
        check_table(table)
        try:
            sheet = self._client.get_table_sheet(table)
            updated = []
            for idx, row in self._read_rows(table):
                if not row_matches(row, filters):
                    continue
                new_row = {**row, **patch}
                sheet.update(
                    f"A{idx}",
                    [self._row_to_cells(table, new_row)],
                    value_input_option="RAW",
                )
                updated.append(new_row)
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {table}: {e}")

    async def delete(
        self,
        table: str,
        filters: dict[str, Any],
    ) -> int:
        """Delete matching rows, bottom-up so row numbers stay valid."""
        check_table(table)
        try:
            sheet = self._client.get_table_sheet(table)
            targets = [idx for idx, row in self._read_rows(table) if row_matches(row, filters)]
            for idx in sorted(targets, reverse=True):
                sheet.delete_rows(idx)
            return len(targets)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {table}: {e}")
