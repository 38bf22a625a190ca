"""
External ledger client (Google Sheets v4).

LedgerClient is the interface the sync layer depends on; GoogleSheetsClient is
the production implementation over google-api-python-client. Request timeouts
are the HTTP client's own.
"""
from typing import List, Optional, Protocol

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


class LedgerClientError(Exception):
    """Raised when a ledger call fails."""
    pass


class LedgerClient(Protocol):
    def append_row(self, spreadsheet_id: str, sheet_name: str, row: List[str]) -> str:
        """Append one row; returns the A1 range that was written."""
        ...

    def create_subledger(self, spreadsheet_id: str, sheet_name: str, header: List[str]) -> Optional[str]:
        """Add a sheet with a header row; returns the new sheet id."""
        ...

    def update_row(self, spreadsheet_id: str, a1_range: str, row: List[str]) -> str:
        ...

    def clear_row(self, spreadsheet_id: str, a1_range: str) -> None:
        ...


def _column_letter(count: int) -> str:
    letters = ""
    while count > 0:
        count, rem = divmod(count - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


class GoogleSheetsClient:
    """Google Sheets implementation of LedgerClient."""

    def __init__(self, credentials_path: str, service=None):
        if service is None:
            creds = service_account.Credentials.from_service_account_file(
                credentials_path, scopes=SCOPES
            )
            service = build("sheets", "v4", credentials=creds, cache_discovery=False)
        self._service = service

    def append_row(self, spreadsheet_id: str, sheet_name: str, row: List[str]) -> str:
        try:
            result = (
                self._service.spreadsheets()
                .values()
                .append(
                    spreadsheetId=spreadsheet_id,
                    range=f"{sheet_name}!A:{_column_letter(len(row))}",
                    valueInputOption="RAW",
                    insertDataOption="INSERT_ROWS",
                    body={"values": [row]},
                )
                .execute()
            )
        except HttpError as e:
            raise LedgerClientError(f"Sheets append failed: {e}") from e
        return result.get("updates", {}).get("updatedRange", "")

    def create_subledger(self, spreadsheet_id: str, sheet_name: str, header: List[str]) -> Optional[str]:
        try:
            result = (
                self._service.spreadsheets()
                .batchUpdate(
                    spreadsheetId=spreadsheet_id,
                    body={
                        "requests": [
                            {
                                "addSheet": {
                                    "properties": {
                                        "title": sheet_name,
                                        "gridProperties": {
                                            "rowCount": 100,
                                            "columnCount": 8,
                                        },
                                    }
                                }
                            }
                        ]
                    },
                )
                .execute()
            )
            replies = result.get("replies") or [{}]
            sheet_id = replies[0].get("addSheet", {}).get("properties", {}).get("sheetId")
            if sheet_id is None:
                return None
            self.append_row(spreadsheet_id, sheet_name, header)
        except HttpError as e:
            raise LedgerClientError(f"Sheets sub-ledger creation failed: {e}") from e
        return str(sheet_id)

    def update_row(self, spreadsheet_id: str, a1_range: str, row: List[str]) -> str:
        try:
            result = (
                self._service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=spreadsheet_id,
                    range=a1_range,
                    valueInputOption="RAW",
                    body={"values": [row]},
                )
                .execute()
            )
        except HttpError as e:
            raise LedgerClientError(f"Sheets update failed: {e}") from e
        return result.get("updatedRange", a1_range)

    def clear_row(self, spreadsheet_id: str, a1_range: str) -> None:
        try:
            (
                self._service.spreadsheets()
                .values()
                .clear(spreadsheetId=spreadsheet_id, range=a1_range, body={})
                .execute()
            )
        except HttpError as e:
            raise LedgerClientError(f"Sheets clear failed: {e}") from e
