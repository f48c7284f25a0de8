"""
Shared fixtures: in-memory persistence, a controllable clock and
``httpx.MockTransport`` helpers for Microsoft identity / Graph.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from config.settings import Settings
from connectors.token_manager import ConnectionRecord

TEST_KEY = "0123456789abcdef0123456789abcdef"  # 32 bytes


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def utc(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFileStore:
    """Dict-backed stand-in for ``database.helpers.FileStore``."""

    def __init__(self):
        self.files: Dict[int, Dict[str, Any]] = {}
        self.sheets: Dict[int, Dict[str, Any]] = {}
        self.rows: Dict[int, List[List[Any]]] = {}
        self.upload_logs: List[tuple] = []
        self.calls: List[str] = []

    async def create_file(self, owner_id, name, mime_type, size, sheet_count, source_info=None) -> int:
        self.calls.append("create_file")
        file_id = len(self.files) + 1
        self.files[file_id] = {
            "id": file_id,
            "userId": owner_id,
            "originalName": name,
            "mimeType": mime_type,
            "fileSize": size,
            "sheetCount": sheet_count,
            "sourceInfo": source_info or {},
            "updatedAt": None,
        }
        return file_id

    async def create_sheet(self, file_id, name, index, row_count, column_count) -> int:
        self.calls.append("create_sheet")
        sheet_id = len(self.sheets) + 1
        self.sheets[sheet_id] = {
            "id": sheet_id,
            "fileId": file_id,
            "name": name,
            "index": index,
            "rowCount": row_count,
            "columnCount": column_count,
        }
        self.rows[sheet_id] = []
        return sheet_id

    async def create_excel_data(self, sheet_id, row_index, row_values) -> None:
        self.calls.append("create_excel_data")
        assert row_index == len(self.rows[sheet_id]), "rows must arrive in order"
        self.rows[sheet_id].append(list(row_values))

    async def get_file_by_id(self, file_id) -> Optional[Dict[str, Any]]:
        return self.files.get(file_id)

    async def update_file_data(self, file_id, sheets) -> datetime:
        self.calls.append("update_file_data")
        if file_id not in self.files:
            raise FileNotFoundError(file_id)
        file_sheets = [s for s in self.sheets.values() if s["fileId"] == file_id]
        for position, payload in enumerate(sheets):
            match = next((s for s in file_sheets if s["name"] == payload["name"]), None)
            if match is None and position < len(file_sheets):
                match = file_sheets[position]
            self.rows[match["id"]] = [list(r) for r in payload["data"]]
            match["rowCount"] = len(payload["data"])
        stamp = datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)
        self.files[file_id]["updatedAt"] = stamp.isoformat()
        return stamp

    async def create_upload_log(self, file_id, file_path, status, error_message=None) -> None:
        self.upload_logs.append((file_id, file_path, status, error_message))

    def sheet_rows(self, file_id: int) -> List[List[Any]]:
        sheet = next(s for s in self.sheets.values() if s["fileId"] == file_id)
        return self.rows[sheet["id"]]


class FakeConnectionStore:
    def __init__(self):
        self.records: Dict[int, ConnectionRecord] = {}

    async def get(self, user_id: int) -> Optional[ConnectionRecord]:
        return self.records.get(user_id)

    async def upsert(self, record: ConnectionRecord) -> None:
        self.records[record.user_id] = record

    async def delete(self, user_id: int) -> bool:
        return self.records.pop(user_id, None) is not None


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload), headers={"Content-Type": "application/json"})


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def make_settings(**overrides: Any) -> Settings:
    values = {
        "sharepoint_tenant_id": "tenant-1",
        "sharepoint_client_id": "client-1",
        "sharepoint_client_secret": "secret-1",
        "sharepoint_redirect_uri": "http://localhost:3001/api/v1/sharepoint/oauth/callback",
        "sharepoint_encryption_key": TEST_KEY,
        "jwt_secret": "test-secret",
        "frontend_url": "http://localhost:5173",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def file_store() -> FakeFileStore:
    return FakeFileStore()


@pytest.fixture
def settings() -> Settings:
    return make_settings()