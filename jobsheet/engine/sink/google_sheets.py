"""Google Sheets sink built on gspread."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Sequence

import gspread
import structlog
from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials
from gspread.exceptions import GSpreadException, WorksheetNotFound
from gspread.utils import ValueInputOption

from ...errors import SinkError
from .base import BaseSink, Row
from .rows import HEADER

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]
SHEET_URL_TEMPLATE = "https://docs.google.com/spreadsheets/d/{sheet_id}"


class GoogleSheetsSink(BaseSink):
    """Write rows into a Google spreadsheet through an authorized gspread client.

    Use :meth:`from_token` with an OAuth bearer token or
    :meth:`from_service_account` with a service-account key file.
    """

    def __init__(self, client: gspread.Client, tab: str = "Jobs") -> None:
        self.client = client
        self.tab = tab
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self.logger = structlog.get_logger("jobsheet").bind(component="sheets_sink")

    @classmethod
    def from_token(cls, token: str, tab: str = "Jobs", timeout: float | None = None) -> "GoogleSheetsSink":
        if not token:
            raise SinkError("Google Sheets sink requires an access token")
        return cls(_authorize(Credentials(token=token), timeout), tab=tab)

    @classmethod
    def from_service_account(
        cls, key_file: Path, tab: str = "Jobs", timeout: float | None = None
    ) -> "GoogleSheetsSink":
        try:
            credentials = ServiceAccountCredentials.from_service_account_file(str(key_file), scopes=SCOPES)
        except (OSError, ValueError) as exc:
            raise SinkError(f"Unable to load service account key {key_file}: {exc}") from exc
        return cls(_authorize(credentials, timeout), tab=tab)

    @contextmanager
    def _api(self, action: str, sheet_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except (GSpreadException, GoogleAuthError, OSError) as exc:
            target = f" {sheet_id}" if sheet_id else ""
            raise SinkError(f"Google Sheets {action}{target} failed: {exc}") from exc

    def _worksheet(self, sheet_id: str) -> gspread.Worksheet:
        worksheet = self._worksheets.get(sheet_id)
        if worksheet is not None:
            return worksheet
        spreadsheet = self.client.open_by_key(sheet_id)
        try:
            worksheet = spreadsheet.worksheet(self.tab)
        except WorksheetNotFound:
            worksheet = spreadsheet.add_worksheet(title=self.tab, rows=1000, cols=len(HEADER))
        self._worksheets[sheet_id] = worksheet
        return worksheet

    def create_sheet(self, title: str) -> str:
        with self._api("create"):
            spreadsheet = self.client.create(title)
            worksheet = spreadsheet.sheet1
            worksheet.update_title(self.tab)
            worksheet.freeze(rows=1)
        self._worksheets[spreadsheet.id] = worksheet
        self.logger.info("spreadsheet_created", title=title, spreadsheet_id=spreadsheet.id)
        return spreadsheet.id

    def write_rows(self, sheet_id: str, rows: Sequence[Row]) -> None:
        with self._api("write", sheet_id):
            self._worksheet(sheet_id).update(
                values=[list(row) for row in rows],
                range_name="A1",
                value_input_option=ValueInputOption.raw,
            )
        self.logger.info("rows_written", spreadsheet_id=sheet_id, rows=len(rows))

    def append_rows(self, sheet_id: str, rows: Sequence[Row]) -> None:
        with self._api("append", sheet_id):
            self._worksheet(sheet_id).append_rows(
                [list(row) for row in rows],
                value_input_option=ValueInputOption.raw,
            )
        self.logger.info("rows_appended", spreadsheet_id=sheet_id, rows=len(rows))

    def sheet_url(self, sheet_id: str) -> str:
        return SHEET_URL_TEMPLATE.format(sheet_id=sheet_id)


def _authorize(credentials, timeout: float | None) -> gspread.Client:
    client = gspread.authorize(credentials)
    if timeout is not None:
        client.set_timeout(timeout)
    return client


__all__ = ["GoogleSheetsSink", "SCOPES"]
