"""Tests for the Google Sheets sink over a mock transport."""

import json

import google.auth.exceptions
import httpx
import pytest

from luma_sync.client.http import HttpClient
from luma_sync.client.ratelimit import TokenBucket
from luma_sync.errors import FatalRequestError, TransientNetworkError
from luma_sync.sinks.sheets import (
    GoogleSheetsSink,
    ServiceAccountTokenProvider,
    a1_range,
    column_letter,
)
from tests.fakes import FakeClock

BASE = "https://sheets.test/v4/spreadsheets"


class StaticToken:
    async def token(self) -> str:
        return "tok-1"


class SheetsApi:
    """Minimal Sheets API: metadata plus a request log."""

    def __init__(self, sheets=None, values=None, status: int = 200) -> None:
        self.sheets = sheets or []
        self.values = values or {}
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "nope"})
        path = request.url.path
        if request.method == "GET" and path.endswith("/sheet-1"):
            return httpx.Response(200, json={"sheets": [{"properties": p} for p in self.sheets]})
        if request.method == "GET" and "/values/" in path:
            name = path.rsplit("/values/", 1)[1].split("!")[0]
            return httpx.Response(200, json=self.values.get(name, {}))
        return httpx.Response(200, json={})

    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path.replace("/v4/spreadsheets/sheet-1", "")) for r in self.requests]


def make_sink(api: SheetsApi) -> GoogleSheetsSink:
    clock = FakeClock()
    http = HttpClient(
        client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        bucket=TokenBucket(600, clock=clock, sleep=clock.sleep),
        name="sheets",
    )
    return GoogleSheetsSink(http, "sheet-1", StaticToken(), base_url=BASE)


def guests_sheet(rows: int = 1000, cols: int = 11) -> dict:
    return {
        "sheetId": 7,
        "title": "Guests",
        "gridProperties": {"rowCount": rows, "columnCount": cols},
    }


class TestA1Notation:
    """Column letters and ranges."""

    def test_column_letters(self):
        assert [column_letter(i) for i in (1, 11, 26, 27, 52, 703)] == [
            "A", "K", "Z", "AA", "AZ", "AAA",
        ]

    def test_range(self):
        assert a1_range("Guests", 2, 501, 11) == "Guests!A2:K501"

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            column_letter(0)


class TestGoogleSheetsSink:
    """REST calls issued for each sink operation."""

    @pytest.mark.asyncio
    async def test_ensure_existing_sheet(self):
        api = SheetsApi(sheets=[guests_sheet()])

        await make_sink(api).ensure("Guests", ["API ID"])

        assert api.calls() == [("GET", "")]
        assert api.requests[0].headers["Authorization"] == "Bearer tok-1"
        assert api.requests[0].url.params["fields"] == "sheets.properties"

    @pytest.mark.asyncio
    async def test_ensure_creates_sheet_with_header(self):
        api = SheetsApi()

        await make_sink(api).ensure("Hosts", ["API ID", "Name"])

        assert [method for method, _ in api.calls()] == ["GET", "POST", "PUT"]
        add = json.loads(api.requests[1].content)["requests"][0]["addSheet"]
        assert add["properties"]["title"] == "Hosts"
        assert add["properties"]["gridProperties"]["columnCount"] == 2
        header = json.loads(api.requests[2].content)
        assert header["values"] == [["API ID", "Name"]]

    @pytest.mark.asyncio
    async def test_write_rows_range_and_body(self):
        api = SheetsApi()

        await make_sink(api).write_rows("Guests", 2, [["a"] * 11, ["b"] * 11])

        request = api.requests[0]
        assert request.method == "PUT"
        assert request.url.path.endswith("/values/Guests!A2:K3")
        assert request.url.params["valueInputOption"] == "USER_ENTERED"
        body = json.loads(request.content)
        assert body["majorDimension"] == "ROWS"
        assert len(body["values"]) == 2

    @pytest.mark.asyncio
    async def test_clear(self):
        api = SheetsApi()

        await make_sink(api).clear("Guests")

        assert api.calls() == [("POST", "/values/Guests:clear")]

    @pytest.mark.asyncio
    async def test_row_count(self):
        api = SheetsApi(values={"Guests": {"values": [["API ID"], ["g1"], ["g2"]]}})
        sink = make_sink(api)

        assert await sink.row_count("Guests") == 3
        assert await sink.row_count("Hosts") == 0

    @pytest.mark.asyncio
    async def test_resize_grows(self):
        api = SheetsApi(sheets=[guests_sheet(rows=1000)])

        await make_sink(api).resize("Guests", 1510, 11)

        update = json.loads(api.requests[1].content)["requests"][0]["updateSheetProperties"]
        assert update["properties"]["sheetId"] == 7
        assert update["properties"]["gridProperties"] == {"rowCount": 1510, "columnCount": 11}

    @pytest.mark.asyncio
    async def test_resize_never_shrinks(self):
        api = SheetsApi(sheets=[guests_sheet(rows=1000)])

        await make_sink(api).resize("Guests", 20, 5)

        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_single_attempt_classification(self):
        """The sink does not retry; the writer does."""
        api = SheetsApi(status=429)

        with pytest.raises(TransientNetworkError):
            await make_sink(api).clear("Guests")

        assert len(api.requests) == 1

    @pytest.mark.asyncio
    async def test_forbidden_is_fatal(self):
        with pytest.raises(FatalRequestError):
            await make_sink(SheetsApi(status=403)).row_count("Guests")


class RejectingCredentials:
    valid = False
    token = None

    def __init__(self, error: Exception) -> None:
        self.error = error

    def refresh(self, request) -> None:
        raise self.error


class TestServiceAccountTokenProvider:
    """Token refresh error mapping."""

    def provider(self, error: Exception) -> ServiceAccountTokenProvider:
        provider = ServiceAccountTokenProvider.__new__(ServiceAccountTokenProvider)
        provider._credentials = RejectingCredentials(error)
        return provider

    @pytest.mark.asyncio
    async def test_rejected_refresh_is_fatal(self):
        provider = self.provider(google.auth.exceptions.RefreshError("invalid_grant"))

        with pytest.raises(FatalRequestError):
            await provider.token()

    @pytest.mark.asyncio
    async def test_transport_failure_is_transient(self):
        provider = self.provider(google.auth.exceptions.TransportError("dns"))

        with pytest.raises(TransientNetworkError):
            await provider.token()
