"""
Tests for ImportOrchestrator: the fetch / normalize / persist state machine.

A scripted in-memory TableSource stands in for the remote systems.
"""

from contextlib import asynccontextmanager
from typing import Any, List, Optional

import pytest
from pydantic import BaseModel

from core.errors import EmptyResult, InvalidSourceError, RemoteApiError
from core.normalizer import ColumnSpec, FieldValue, graph_field
from core.orchestrator import ImportOrchestrator, ImportRun, ImportState
from sources.base import SourceSession, TableSource


class _Descriptor(BaseModel):
    listId: str
    listName: Optional[str] = None


class _ScriptedSession(SourceSession):
    def __init__(self, source: "ScriptedSource"):
        self._source = source
        if source.extractor_error:
            def broken(value: Any) -> FieldValue:
                raise source.extractor_error

            self.extractor = broken
        else:
            self.extractor = graph_field

    async def columns(self) -> List[ColumnSpec]:
        if self._source.columns_error:
            raise self._source.columns_error
        return list(self._source.columns)

    async def records(self, columns):
        if self._source.records_error:
            raise self._source.records_error
        return list(self._source.items)


class ScriptedSource(TableSource):
    descriptor_model = _Descriptor

    def __init__(self, columns, items, refresh_mode: str = "manual"):
        self.columns = columns
        self.items = items
        self.refresh_mode = refresh_mode
        self.columns_error = None
        self.records_error = None
        self.extractor_error = None
        self.opened = 0

    @property
    def source_type(self) -> str:
        return "scripted"

    @property
    def mime_type(self) -> str:
        return "application/x-scripted"

    def sheet_name(self, descriptor) -> str:
        return descriptor.listName or "Scripted"

    @asynccontextmanager
    async def open(self, descriptor, credentials):
        self.opened += 1
        yield _ScriptedSession(self)


COLUMNS = [ColumnSpec("Title", "Title"), ColumnSpec("Tags", "Tags"), ColumnSpec("Due", "Due Date")]
ITEMS = [
    {"Title": "Ship it", "Tags": ["a", "b"], "Due": "2024-01-05T10:00:00"},
    {"Title": "Review", "Tags": None},
]
EXPECTED_ROWS = [
    ["Ship it", "a; b", "1/5/2024, 10:00:00 AM"],
    ["Review", "", ""],
]


@pytest.fixture
def source():
    return ScriptedSource(COLUMNS, ITEMS)


@pytest.fixture
def orchestrator(source, file_store):
    return ImportOrchestrator({"scripted": source}, file_store)


class TestImport:
    @pytest.mark.asyncio
    async def test_import_persists_header_then_rows(self, orchestrator, file_store):
        outcome = await orchestrator.import_from_source(
            "scripted", {"listId": "L1", "listName": "Tasks"}, owner_id=7
        )

        assert outcome.table.headers == ["Title", "Tags", "Due Date"]
        assert outcome.table.rows == EXPECTED_ROWS
        assert outcome.history == [
            ImportState.FETCHING_METADATA,
            ImportState.FETCHING_DATA,
            ImportState.NORMALIZING,
            ImportState.PERSISTING,
            ImportState.DONE,
        ]

        body = outcome.to_dict()
        assert body["rowCount"] == 2
        assert body["columnCount"] == 3
        assert body["sheetName"] == "Tasks"
        assert body["data"][0] == ["Title", "Tags", "Due Date"]

        stored = file_store.files[outcome.file_id]
        assert stored["userId"] == 7
        assert stored["originalName"] == "Tasks"
        assert stored["mimeType"] == "application/x-scripted"
        assert stored["sourceInfo"] == {
            "listId": "L1",
            "listName": "Tasks",
            "type": "scripted",
            "refreshMode": "manual",
        }
        assert file_store.sheet_rows(outcome.file_id) == [["Title", "Tags", "Due Date"], *EXPECTED_ROWS]
        sheet = next(iter(file_store.sheets.values()))
        assert sheet["rowCount"] == 3
        assert sheet["columnCount"] == 3

    @pytest.mark.asyncio
    async def test_custom_title(self, orchestrator, file_store):
        outcome = await orchestrator.import_from_source(
            "scripted", {"listId": "L1"}, owner_id=1, title="My import"
        )
        assert file_store.files[outcome.file_id]["originalName"] == "My import"

    @pytest.mark.asyncio
    async def test_zero_rows_is_empty_result_and_nothing_persisted(self, source, orchestrator, file_store):
        source.items = []
        run = ImportRun("scripted")

        result = await orchestrator.import_from_source("scripted", {"listId": "L1"}, owner_id=1, run=run)

        assert isinstance(result, EmptyResult)
        assert run.state is ImportState.DONE
        assert ImportState.PERSISTING not in run.history
        assert file_store.calls == []

    @pytest.mark.asyncio
    async def test_unknown_source_type(self, orchestrator):
        with pytest.raises(InvalidSourceError):
            await orchestrator.import_from_source("nope", {}, owner_id=1)

    @pytest.mark.asyncio
    async def test_invalid_descriptor(self, orchestrator, source):
        with pytest.raises(InvalidSourceError):
            await orchestrator.import_from_source("scripted", {"listName": "no id"}, owner_id=1)
        assert source.opened == 0


class TestFailureStates:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "attribute, failed_in",
        [
            ("columns_error", ImportState.FETCHING_METADATA),
            ("records_error", ImportState.FETCHING_DATA),
            ("extractor_error", ImportState.NORMALIZING),
        ],
    )
    async def test_fetch_failures(self, source, orchestrator, file_store, attribute, failed_in):
        error = RemoteApiError("boom", status_code=500)
        setattr(source, attribute, error)
        run = ImportRun("scripted")

        with pytest.raises(RemoteApiError) as exc_info:
            await orchestrator.import_from_source("scripted", {"listId": "L1"}, owner_id=1, run=run)

        assert exc_info.value is error
        assert run.state is ImportState.FAILED
        assert run.failed_in is failed_in
        assert file_store.calls == []

    @pytest.mark.asyncio
    async def test_store_failure(self, source, file_store):
        async def broken_create_sheet(*args, **kwargs):
            raise RuntimeError("disk full")

        file_store.create_sheet = broken_create_sheet
        orchestrator = ImportOrchestrator({"scripted": source}, file_store)
        run = ImportRun("scripted")

        with pytest.raises(RuntimeError, match="disk full"):
            await orchestrator.import_from_source("scripted", {"listId": "L1"}, owner_id=1, run=run)

        assert run.failed_in is ImportState.PERSISTING
        assert run.history[-1] is ImportState.FAILED

    def test_illegal_transition(self):
        run = ImportRun("scripted")
        with pytest.raises(RuntimeError):
            run.advance(ImportState.PERSISTING)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_replaces_rows(self, source, orchestrator, file_store):
        first = await orchestrator.import_from_source(
            "scripted", {"listId": "L1", "listName": "Tasks"}, owner_id=1
        )
        source.items = [{"Title": "Only", "Tags": ["z"], "Due": None}]

        outcome = await orchestrator.refresh_import(first.file_id)

        assert outcome.to_dict() == {
            "rowCount": 1,
            "updatedAt": "2024-01-05T10:00:00+00:00",
            "data": [["Title", "Tags", "Due Date"], ["Only", "z", ""]],
        }
        assert file_store.sheet_rows(first.file_id) == [["Title", "Tags", "Due Date"], ["Only", "z", ""]]
        assert len(file_store.files) == 1

    @pytest.mark.asyncio
    async def test_refresh_missing_file(self, orchestrator):
        with pytest.raises(FileNotFoundError):
            await orchestrator.refresh_import(404)

    @pytest.mark.asyncio
    async def test_refresh_to_empty_keeps_old_rows(self, source, orchestrator, file_store):
        first = await orchestrator.import_from_source("scripted", {"listId": "L1"}, owner_id=1)
        source.items = []

        result = await orchestrator.refresh_import(first.file_id)

        assert isinstance(result, EmptyResult)
        assert "update_file_data" not in file_store.calls
        assert len(file_store.sheet_rows(first.file_id)) == 3

    @pytest.mark.asyncio
    async def test_static_import_refused(self, orchestrator, file_store):
        file_id = await file_store.create_file(
            1, "dump.sql", "application/sql", 0, 1, {"type": "scripted", "refreshMode": "static"}
        )
        with pytest.raises(InvalidSourceError):
            await orchestrator.refresh_import(file_id)


class TestWorkbook:
    @pytest.mark.asyncio
    async def test_each_sheet_persisted_in_order(self, orchestrator, file_store):
        from core.normalizer import NormalizedTable

        sheets = [
            ("First", NormalizedTable(["a", "b"], [[1, 2]])),
            ("Blank", NormalizedTable([], [])),
        ]
        summary = await orchestrator.import_workbook(3, "book.xlsx", "application/vnd.ms-excel", 1024, sheets)

        assert summary["sheetCount"] == 2
        assert summary["sheets"] == ["First", "Blank"]
        stored = file_store.files[summary["id"]]
        assert stored["sourceInfo"] == {"type": "excel", "refreshMode": "static"}
        row_counts = [s["rowCount"] for s in file_store.sheets.values()]
        assert row_counts == [2, 0]
