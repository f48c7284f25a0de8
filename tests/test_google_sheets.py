"""
Tests for the Google Sheets client and source, with the discovery
service replaced by a MagicMock.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from core.errors import ConfigurationError, EmptyResult, InvalidSourceError, RemoteApiError
from core.orchestrator import ImportOrchestrator
from sources.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsSource,
    a1_range,
    extract_spreadsheet_id,
)

from conftest import make_settings

SHEET_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz0123456789"


def _service(values=None, metadata=None, error=None):
    service = MagicMock()
    values_get = service.spreadsheets.return_value.values.return_value.get
    meta_get = service.spreadsheets.return_value.get
    if error is not None:
        values_get.return_value.execute.side_effect = error
        meta_get.return_value.execute.side_effect = error
    else:
        values_get.return_value.execute.return_value = {"values": values or []}
        meta_get.return_value.execute.return_value = metadata or {}
    return service


def _client(service):
    return GoogleSheetsClient(make_settings(), service_factory=lambda: service)


class TestSpreadsheetId:
    def test_from_url(self):
        url = f"https://docs.google.com/spreadsheets/d/{SHEET_ID}/edit#gid=0"
        assert extract_spreadsheet_id(url) == SHEET_ID

    def test_bare_id(self):
        assert extract_spreadsheet_id(SHEET_ID) == SHEET_ID

    @pytest.mark.parametrize("bad", ["", "https://example.com/doc", "short"])
    def test_invalid(self, bad):
        with pytest.raises(InvalidSourceError):
            extract_spreadsheet_id(bad)

    def test_range_quotes_sheet_name(self):
        assert a1_range("Bob's sheet") == "'Bob''s sheet'!A1:Z5000"


class TestClient:
    @pytest.mark.asyncio
    async def test_metadata(self):
        service = _service(
            metadata={
                "spreadsheetId": SHEET_ID,
                "properties": {"title": "Budget"},
                "sheets": [
                    {"properties": {"sheetId": 0, "title": "2024", "index": 0,
                                    "gridProperties": {"rowCount": 100, "columnCount": 8}}},
                ],
            }
        )
        meta = await _client(service).get_metadata(SHEET_ID)
        assert meta == {
            "spreadsheetId": SHEET_ID,
            "title": "Budget",
            "sheets": [{"sheetId": 0, "title": "2024", "index": 0, "rowCount": 100, "columnCount": 8}],
        }

    @pytest.mark.asyncio
    async def test_sheet_data_pads_rows(self):
        service = _service(values=[["Name", "Qty", ""], ["Pen", 3], ["Ink"]])
        data = await _client(service).get_sheet_data(SHEET_ID, "Stock")
        assert data == {"headers": ["Name", "Qty", "Column3"], "rows": [["Pen", 3, ""], ["Ink", "", ""]]}
        kwargs = service.spreadsheets.return_value.values.return_value.get.call_args.kwargs
        assert kwargs["range"] == "'Stock'!A1:Z5000"

    @pytest.mark.asyncio
    async def test_http_error_becomes_remote_error(self):
        resp = MagicMock(status=403, reason="Forbidden")
        error = HttpError(resp, b'{"error": {"message": "The caller does not have permission"}}')
        with pytest.raises(RemoteApiError) as exc_info:
            await _client(_service(error=error)).get_values(SHEET_ID, "Stock")
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        client = GoogleSheetsClient(make_settings(google_service_account_file="", google_api_key=""))
        assert not client.is_configured()
        with pytest.raises(ConfigurationError):
            await client.get_values(SHEET_ID, "Stock")

    @pytest.mark.asyncio
    async def test_each_request_builds_its_own_service(self):
        factory = MagicMock(side_effect=lambda: _service(values=[["Name"], ["Pen"]]))
        client = GoogleSheetsClient(make_settings(), service_factory=factory)

        await asyncio.gather(
            client.get_values(SHEET_ID, "Stock"),
            client.get_values(SHEET_ID, "Stock"),
            client.get_metadata(SHEET_ID),
        )

        assert factory.call_count == 3


class TestGoogleSheetsSource:
    @pytest.mark.asyncio
    async def test_import(self, file_store):
        service = _service(values=[["Name", "Qty"], ["Pen", 3], ["Ink"]])
        orchestrator = ImportOrchestrator({"google_sheet": GoogleSheetsSource(_client(service))}, file_store)

        outcome = await orchestrator.import_from_source(
            "google_sheet", {"spreadsheetId": SHEET_ID, "sheetName": "Stock"}, owner_id=4
        )

        assert outcome.table.headers == ["Name", "Qty"]
        assert outcome.table.rows == [["Pen", 3], ["Ink", ""]]
        stored = file_store.files[outcome.file_id]
        assert stored["originalName"] == "GS: Stock"
        assert stored["mimeType"] == "application/vnd.google-apps.spreadsheet"
        assert stored["sourceInfo"]["type"] == "google_sheet"

    @pytest.mark.asyncio
    async def test_header_only_sheet_is_empty(self, file_store):
        service = _service(values=[["Name", "Qty"]])
        orchestrator = ImportOrchestrator({"google_sheet": GoogleSheetsSource(_client(service))}, file_store)
        result = await orchestrator.import_from_source(
            "google_sheet", {"spreadsheetId": SHEET_ID, "sheetName": "Stock"}, owner_id=4
        )
        assert isinstance(result, EmptyResult)
