"""
Google Sheets import.

Access is through ``googleapiclient`` with either a service-account key
file or a plain API key (public sheets).  The client library is
synchronous, so every ``execute()`` is offloaded with
``asyncio.to_thread()``.

The first row of the range is the header row; shorter data rows are
padded with "" so every row has one cell per header.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config.settings import Settings, config
from core.errors import ConfigurationError, InvalidSourceError, RemoteApiError
from core.normalizer import ColumnSpec, positional_columns, rows_to_items
from sources.base import SourceSession, TableSource
from utils.schemas import GoogleSheetSource

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
DEFAULT_RANGE = "A1:Z5000"

_URL_ID = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")
_BARE_ID = re.compile(r"^[a-zA-Z0-9_-]{20,}$")


def extract_spreadsheet_id(url: str) -> str:
    """Spreadsheet id from a sharing URL, or the input itself if it already is one."""
    text = (url or "").strip()
    match = _URL_ID.search(text)
    if match:
        return match.group(1)
    if _BARE_ID.match(text):
        return text
    raise InvalidSourceError("Invalid Google Sheets URL")


def a1_range(sheet_name: str, cell_range: str = DEFAULT_RANGE) -> str:
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{cell_range}"


class GoogleSheetsClient:
    def __init__(
        self,
        settings: Settings = config,
        *,
        service_factory: Optional[Callable[[], Any]] = None,
    ):
        self._settings = settings
        self._service_factory = service_factory

    def is_configured(self) -> bool:
        return bool(
            self._service_factory
            or self._settings.google_service_account_file
            or self._settings.google_api_key
        )

    def _build_service(self) -> Any:
        if self._service_factory is not None:
            return self._service_factory()
        if self._settings.google_service_account_file:
            creds = service_account.Credentials.from_service_account_file(
                self._settings.google_service_account_file, scopes=SCOPES
            )
            return build("sheets", "v4", credentials=creds, cache_discovery=False)
        if self._settings.google_api_key:
            return build("sheets", "v4", developerKey=self._settings.google_api_key, cache_discovery=False)
        raise ConfigurationError(
            "Google Sheets is not configured. Set GOOGLE_SERVICE_ACCOUNT_FILE or GOOGLE_API_KEY."
        )

    async def _service_handle(self) -> Any:
        # one service per request: its httplib2 transport is not thread-safe
        return await asyncio.to_thread(self._build_service)

    async def _execute(self, request: Any) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as exc:
            status = int(exc.resp.status)
            logger.error("Google Sheets API error: %s %s", status, exc.reason)
            raise RemoteApiError(exc.reason or "Google Sheets request failed", status_code=status) from exc

    async def get_metadata(self, spreadsheet_id: str) -> Dict[str, Any]:
        service = await self._service_handle()
        data = await self._execute(
            service.spreadsheets().get(
                spreadsheetId=spreadsheet_id,
                fields="spreadsheetId,properties.title,sheets.properties",
            )
        )
        sheets = []
        for sheet in data.get("sheets", []):
            props = sheet.get("properties", {})
            grid = props.get("gridProperties", {})
            sheets.append(
                {
                    "sheetId": props.get("sheetId"),
                    "title": props.get("title"),
                    "index": props.get("index"),
                    "rowCount": grid.get("rowCount", 0),
                    "columnCount": grid.get("columnCount", 0),
                }
            )
        return {
            "spreadsheetId": data.get("spreadsheetId", spreadsheet_id),
            "title": data.get("properties", {}).get("title", ""),
            "sheets": sheets,
        }

    async def get_values(
        self, spreadsheet_id: str, sheet_name: str, cell_range: str = DEFAULT_RANGE
    ) -> List[List[Any]]:
        service = await self._service_handle()
        data = await self._execute(
            service.spreadsheets().values().get(
                spreadsheetId=spreadsheet_id,
                range=a1_range(sheet_name, cell_range),
                valueRenderOption="UNFORMATTED_VALUE",
                dateTimeRenderOption="FORMATTED_STRING",
            )
        )
        values = data.get("values", [])
        logger.info("Fetched %d rows from sheet '%s'", len(values), sheet_name)
        return values

    async def get_sheet_data(
        self, spreadsheet_id: str, sheet_name: str, cell_range: str = DEFAULT_RANGE
    ) -> Dict[str, Any]:
        """Headers plus padded data rows, for previews."""
        values = await self.get_values(spreadsheet_id, sheet_name, cell_range)
        if not values:
            return {"headers": [], "rows": []}
        width = max(len(row) for row in values)
        headers = [col.header for col in positional_columns(values[0], width)]
        rows = [list(row) + [""] * (width - len(row)) for row in values[1:]]
        return {"headers": headers, "rows": rows}


class _SheetSession(SourceSession):
    def __init__(self, client: GoogleSheetsClient, descriptor: GoogleSheetSource):
        self._client = client
        self._descriptor = descriptor
        self._values: Optional[List[List[Any]]] = None

    async def _load(self) -> List[List[Any]]:
        if self._values is None:
            self._values = await self._client.get_values(
                self._descriptor.spreadsheet_id,
                self._descriptor.sheet_name,
                self._descriptor.range or DEFAULT_RANGE,
            )
        return self._values

    async def columns(self) -> List[ColumnSpec]:
        values = await self._load()
        if not values:
            return []
        width = max(len(row) for row in values)
        return positional_columns(values[0], width)

    async def records(self, columns: List[ColumnSpec]) -> List[Mapping[str, Any]]:
        values = await self._load()
        return rows_to_items(values[1:])


class GoogleSheetsSource(TableSource):
    descriptor_model = GoogleSheetSource

    def __init__(self, client: GoogleSheetsClient):
        self._client = client

    @property
    def source_type(self) -> str:
        return "google_sheet"

    @property
    def mime_type(self) -> str:
        return "application/vnd.google-apps.spreadsheet"

    def is_configured(self) -> bool:
        return self._client.is_configured()

    def sheet_name(self, descriptor: GoogleSheetSource) -> str:
        return descriptor.sheet_name

    def default_title(self, descriptor: GoogleSheetSource) -> str:
        return f"GS: {descriptor.sheet_name}"

    @asynccontextmanager
    async def open(self, descriptor: GoogleSheetSource, credentials: Mapping[str, Any]) -> AsyncIterator[SourceSession]:
        logger.info("Importing Google Sheet %s / '%s'", descriptor.spreadsheet_id, descriptor.sheet_name)
        yield _SheetSession(self._client, descriptor)
