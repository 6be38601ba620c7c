import logging
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from hrops.core.config import settings
from hrops.core.exceptions import ExternalCallFailure
from hrops.integrations.google_auth import (
    SHEETS_SCOPES,
    StaticTokenProvider,
    TokenProviderProtocol,
    default_token_provider,
)
from hrops.integrations.sheets.models import RosterTable

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"


@runtime_checkable
class RosterSourceProtocol(Protocol):
    async def get_table(self, sheet_name: str) -> RosterTable: ...


@runtime_checkable
class RosterWriterProtocol(Protocol):
    async def append_record(self, sheet_name: str, record: dict[str, Any]) -> None: ...


def a1_range(sheet_name: str, cells: str = "") -> str:
    quoted = "'" + sheet_name.replace("'", "''") + "'"
    return f"{quoted}!{cells}" if cells else quoted


def build_row(headers: list[str], record: dict[str, Any], sheet_name: str = "") -> list[Any]:
    """Order ``record`` (header -> value) by the sheet's header row.

    Raises MissingColumnError when a header of the record is not in the sheet.
    """
    table = RosterTable(sheet_name=sheet_name, headers=headers)
    positions = table.column_indices({h: h for h in record})
    row: list[Any] = [""] * len(headers)
    for header, value in record.items():
        row[positions[header]] = value
    return row


class GoogleSheetsRosterClient:
    """Bulk reads of one sheet (header row + data rows) and row appends."""

    def __init__(
        self,
        spreadsheet_id: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token_provider: TokenProviderProtocol | None = None,
    ):
        self._spreadsheet_id = spreadsheet_id or settings.roster_spreadsheet_id
        if token_provider is None:
            token_provider = StaticTokenProvider(token) if token else default_token_provider(SHEETS_SCOPES)
        self._token_provider = token_provider
        self._transport = transport

    def _values_url(self, a1: str, suffix: str = "") -> str:
        return f"{SHEETS_API_BASE}/{self._spreadsheet_id}/values/{quote(a1, safe='')}{suffix}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {await self._token_provider.get_token()}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Sheets %s transport error: %r", method, e)
            raise ExternalCallFailure("Sheets", f"{method} {type(e).__name__}") from e

    @staticmethod
    def _raise_for_status(resp: httpx.Response, sheet_name: str) -> None:
        if resp.status_code == 400 and "Unable to parse range" in resp.text:
            raise ExternalCallFailure("Sheets", f"sheet '{sheet_name}' not found")
        if resp.status_code >= 400:
            logger.error("Sheets values call failed (%s): %s", resp.status_code, resp.text)
            raise ExternalCallFailure("Sheets", f"HTTP {resp.status_code}")

    async def get_values(self, a1: str, sheet_name: str = "") -> list[list[Any]]:
        resp = await self._request(
            "GET",
            self._values_url(a1),
            params={
                "majorDimension": "ROWS",
                "valueRenderOption": "UNFORMATTED_VALUE",
                "dateTimeRenderOption": "FORMATTED_STRING",
            },
        )
        self._raise_for_status(resp, sheet_name or a1)
        return resp.json().get("values", [])

    async def update_values(self, a1: str, values: list[list[Any]], sheet_name: str = "") -> None:
        resp = await self._request(
            "PUT",
            self._values_url(a1),
            params={"valueInputOption": "USER_ENTERED"},
            json={"range": a1, "majorDimension": "ROWS", "values": values},
        )
        self._raise_for_status(resp, sheet_name or a1)

    async def get_table(self, sheet_name: str) -> RosterTable:
        values = await self.get_values(a1_range(sheet_name), sheet_name)
        if not values:
            return RosterTable(sheet_name=sheet_name, headers=[], rows=[])
        headers = [str(h).strip() for h in values[0]]
        logger.info("Read %d rows from sheet '%s'", len(values) - 1, sheet_name)
        return RosterTable(sheet_name=sheet_name, headers=headers, rows=values[1:])

    async def append_record(self, sheet_name: str, record: dict[str, Any]) -> None:
        header_rows = await self.get_values(a1_range(sheet_name, "1:1"), sheet_name)
        headers = [str(h).strip() for h in (header_rows[0] if header_rows else [])]
        row = build_row(headers, record, sheet_name)
        resp = await self._request(
            "POST",
            self._values_url(a1_range(sheet_name), ":append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": [row]},
        )
        self._raise_for_status(resp, sheet_name)
        logger.info("Appended row to sheet '%s'", sheet_name)


class FakeRosterSource:
    """Test fake returning predefined tables."""

    def __init__(self, tables: dict[str, RosterTable] | None = None):
        self.tables = tables or {}
        self.reads: list[str] = []

    async def get_table(self, sheet_name: str) -> RosterTable:
        self.reads.append(sheet_name)
        if sheet_name not in self.tables:
            raise ExternalCallFailure("Sheets", f"sheet '{sheet_name}' not found")
        return self.tables[sheet_name]

    async def append_record(self, sheet_name: str, record: dict[str, Any]) -> None:
        if sheet_name not in self.tables:
            raise ExternalCallFailure("Sheets", f"sheet '{sheet_name}' not found")
        table = self.tables[sheet_name]
        table.rows.append(build_row(table.headers, record, sheet_name))
