"""Google Sheets v4 backend for the tabular sink."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence
from urllib.parse import quote

import google.auth.exceptions
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2 import service_account

from luma_sync.client.http import HttpClient, RetryPolicy
from luma_sync.config.settings import Credentials, SyncConfig
from luma_sync.errors import FatalRequestError, TransientNetworkError
from luma_sync.sinks.base import TabularSink
from luma_sync.utils.logging import get_logger

logger = get_logger("sinks.sheets")

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_ROWS = 1000


def column_letter(index: int) -> str:
    """Convert a 1-based column index to A1 letters (1 -> A, 27 -> AA)."""
    if index < 1:
        raise ValueError(f"column index must be >= 1, got {index}")
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def a1_range(sheet: str, start_row: int, end_row: int, width: int) -> str:
    """A1 range covering ``width`` columns between two rows, inclusive."""
    return f"{sheet}!A{start_row}:{column_letter(width)}{end_row}"


class ServiceAccountTokenProvider:
    """
    Bearer tokens for a Google service account.

    JWT signing and the token exchange are done by google-auth; tokens are
    cached until they expire.
    """

    def __init__(self, client_email: str, private_key: str) -> None:
        self._credentials = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": client_email,
                "private_key": private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=[SHEETS_SCOPE],
        )

    async def token(self) -> str:
        if not self._credentials.valid:
            logger.debug("refreshing_access_token")
            try:
                await asyncio.to_thread(self._credentials.refresh, GoogleRequest())
            except google.auth.exceptions.TransportError as e:
                raise TransientNetworkError(f"Token refresh failed: {e}", url=TOKEN_URI) from e
            except google.auth.exceptions.RefreshError as e:
                raise FatalRequestError(f"Token refresh rejected: {e}", url=TOKEN_URI) from e
        return self._credentials.token


class GoogleSheetsSink(TabularSink):
    """Spreadsheet tabs as destinations, one HTTP call per operation."""

    def __init__(
        self,
        http: HttpClient,
        spreadsheet_id: str,
        token_provider: Any,
        base_url: str = "https://sheets.googleapis.com/v4/spreadsheets",
    ) -> None:
        """
        Initialize the sink.

        Args:
            http: Rate-limited client (single attempt per call)
            spreadsheet_id: Target spreadsheet
            token_provider: Object with an async ``token()`` method
            base_url: Sheets API root
        """
        self.http = http
        self.spreadsheet_id = spreadsheet_id
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")

    @classmethod
    def create(cls, credentials: Credentials, config: SyncConfig) -> "GoogleSheetsSink":
        http = HttpClient(
            requests_per_minute=config.sheets.requests_per_minute,
            max_concurrent=config.sheets.max_concurrent,
            timeout=config.sheets.request_timeout,
            retry=RetryPolicy.from_config(config.retry),
            name="sheets",
        )
        provider = ServiceAccountTokenProvider(
            credentials.google_client_email,
            credentials.google_private_key,
        )
        return cls(http, credentials.google_sheet_id, provider, config.sheets_base_url)

    @property
    def _spreadsheet_url(self) -> str:
        return f"{self.base_url}/{self.spreadsheet_id}"

    def _values_url(self, a1: str, suffix: str = "") -> str:
        return f"{self._spreadsheet_url}/values/{quote(a1, safe='!:')}{suffix}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        token = await self.token_provider.token()
        headers = {"Authorization": f"Bearer {token}"}
        response = await self.http.request(method, url, headers=headers, **kwargs)
        if not response.content:
            return {}
        return response.json()

    async def _sheet_properties(self, destination: str) -> Optional[dict]:
        data = await self._send(
            "GET",
            self._spreadsheet_url,
            params={"fields": "sheets.properties"},
        )
        for sheet in data.get("sheets", []):
            properties = sheet.get("properties", {})
            if properties.get("title") == destination:
                return properties
        return None

    async def _batch_update(self, requests: list[dict]) -> None:
        await self._send(
            "POST",
            f"{self._spreadsheet_url}:batchUpdate",
            json={"requests": requests},
        )

    async def ensure(self, destination: str, headers: Sequence[str]) -> None:
        if await self._sheet_properties(destination) is not None:
            return

        logger.info("creating_sheet", destination=destination)
        await self._batch_update([{
            "addSheet": {
                "properties": {
                    "title": destination,
                    "gridProperties": {
                        "rowCount": DEFAULT_ROWS,
                        "columnCount": len(headers),
                    },
                },
            },
        }])
        await self.write_header(destination, headers)

    async def clear(self, destination: str) -> None:
        await self._send("POST", self._values_url(destination, ":clear"))
        logger.info("sheet_cleared", destination=destination)

    async def write_header(self, destination: str, headers: Sequence[str]) -> None:
        await self._send(
            "PUT",
            self._values_url(f"{destination}!A1"),
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": [list(headers)], "majorDimension": "ROWS"},
        )

    async def write_rows(
        self,
        destination: str,
        start_row: int,
        values: Sequence[Sequence[Any]],
    ) -> None:
        if not values:
            return
        width = max(len(row) for row in values)
        end_row = start_row + len(values) - 1
        await self._send(
            "PUT",
            self._values_url(a1_range(destination, start_row, end_row, width)),
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": [list(row) for row in values], "majorDimension": "ROWS"},
        )

    async def row_count(self, destination: str) -> int:
        data = await self._send("GET", self._values_url(f"{destination}!A:A"))
        return len(data.get("values", []))

    async def resize(self, destination: str, min_rows: int, min_cols: int) -> None:
        properties = await self._sheet_properties(destination)
        if properties is None:
            logger.warning("resize_missing_sheet", destination=destination)
            return

        grid = properties.get("gridProperties", {})
        current_rows = grid.get("rowCount", DEFAULT_ROWS)
        current_cols = grid.get("columnCount", 26)
        rows = max(current_rows, min_rows)
        cols = max(current_cols, min_cols)
        if rows == current_rows and cols == current_cols:
            return

        logger.info(
            "resizing_sheet",
            destination=destination,
            rows=rows,
            columns=cols,
        )
        await self._batch_update([{
            "updateSheetProperties": {
                "properties": {
                    "sheetId": properties["sheetId"],
                    "gridProperties": {"rowCount": rows, "columnCount": cols},
                },
                "fields": "gridProperties(rowCount,columnCount)",
            },
        }])

    async def aclose(self) -> None:
        await self.http.aclose()
