"""
Import orchestrator: fetch, normalize and persist one table from any source.

Every import walks the same explicit state machine:

    FetchingMetadata → FetchingData → Normalizing → Persisting → Done
                 └───────────┴─────────────┴────────────┴──→ Failed

A source that yields zero data rows ends in ``Done`` without persisting
and the caller gets an ``EmptyResult`` back.  Any exception moves the run
to ``Failed`` (remembering the state it failed in) and propagates
unchanged; nothing is retried.  Rows are written one at a time in source
order, inside whatever transaction the file store runs in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from core.errors import EmptyResult, InvalidSourceError
from core.normalizer import NormalizedTable, normalize_table
from sources.base import TableSource

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


class ImportState(str, Enum):
    FETCHING_METADATA = "FetchingMetadata"
    FETCHING_DATA = "FetchingData"
    NORMALIZING = "Normalizing"
    PERSISTING = "Persisting"
    DONE = "Done"
    FAILED = "Failed"


_TRANSITIONS = {
    ImportState.FETCHING_METADATA: {ImportState.FETCHING_DATA, ImportState.FAILED},
    ImportState.FETCHING_DATA: {ImportState.NORMALIZING, ImportState.FAILED},
    ImportState.NORMALIZING: {ImportState.PERSISTING, ImportState.DONE, ImportState.FAILED},
    ImportState.PERSISTING: {ImportState.DONE, ImportState.FAILED},
    ImportState.DONE: set(),
    ImportState.FAILED: set(),
}


class ImportRun:
    """State of one import or refresh request."""

    def __init__(self, source_type: str):
        self.source_type = source_type
        self.state = ImportState.FETCHING_METADATA
        self.history: List[ImportState] = [self.state]
        self.failed_in: Optional[ImportState] = None
        self.error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def advance(self, new_state: ImportState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal import transition {self.state.value} → {new_state.value}")
        logger.debug("[%s] %s → %s", self.source_type, self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def fail(self, exc: BaseException) -> None:
        if self.is_terminal:
            return
        self.failed_in = self.state
        self.error = exc
        self.advance(ImportState.FAILED)
        logger.error("[%s] import failed while %s: %s", self.source_type, self.failed_in.value, exc)


class FileStoreProtocol(Protocol):
    async def create_file(self, owner_id: int, name: str, mime_type: str, size: int,
                          sheet_count: int, source_info: Optional[Dict[str, Any]] = None) -> int: ...

    async def create_sheet(self, file_id: int, name: str, index: int, row_count: int, column_count: int) -> int: ...

    async def create_excel_data(self, sheet_id: int, row_index: int, row_values: Sequence[Any]) -> None: ...

    async def get_file_by_id(self, file_id: int) -> Optional[Dict[str, Any]]: ...

    async def update_file_data(self, file_id: int, sheets: List[Dict[str, Any]]) -> Any: ...


@dataclass
class ImportOutcome:
    file_id: int
    sheet_name: str
    table: NormalizedTable
    history: List[ImportState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "sheetName": self.sheet_name,
            "headers": self.table.headers,
            "rows": self.table.rows,
            "rowCount": self.table.row_count,
            "columnCount": self.table.column_count,
            "data": self.table.as_array(),
        }


@dataclass
class RefreshOutcome:
    file_id: int
    table: NormalizedTable
    updated_at: str
    history: List[ImportState] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rowCount": self.table.row_count,
            "updatedAt": self.updated_at,
            "data": self.table.as_array(),
        }


class ImportOrchestrator:
    def __init__(self, sources: Mapping[str, TableSource], store: FileStoreProtocol):
        """
        Parameters
        ----------
        sources : mapping of ``source_info.type`` → TableSource
        store   : persistence collaborator (``database.helpers.FileStore``)
        """
        self.sources = dict(sources)
        self.store = store

    def source_for(self, source_type: str) -> TableSource:
        try:
            return self.sources[source_type]
        except KeyError:
            raise InvalidSourceError(f"Unknown source type: {source_type}") from None

    # ── fetch + normalize ───────────────────────────────────────────────

    async def fetch_table(
        self,
        run: ImportRun,
        source: TableSource,
        descriptor: Any,
        credentials: Mapping[str, Any],
    ) -> NormalizedTable:
        async with source.open(descriptor, credentials) as session:
            columns = await session.columns()
            run.advance(ImportState.FETCHING_DATA)
            records = await session.records(columns)
            run.advance(ImportState.NORMALIZING)
            return normalize_table(records, columns, extractor=session.extractor)

    # ── public entry points ─────────────────────────────────────────────

    async def import_from_source(
        self,
        source_type: str,
        payload: Mapping[str, Any],
        credentials: Optional[Mapping[str, Any]] = None,
        *,
        owner_id: int,
        title: Optional[str] = None,
        run: Optional[ImportRun] = None,
    ) -> Union[ImportOutcome, EmptyResult]:
        source = self.source_for(source_type)
        descriptor = source.parse_descriptor(payload)
        run = run or ImportRun(source.source_type)
        try:
            table = await self.fetch_table(run, source, descriptor, credentials or {})
            if table.is_empty:
                run.advance(ImportState.DONE)
                logger.info("[%s] source returned no rows; nothing persisted", source.source_type)
                return EmptyResult(source.source_type)

            run.advance(ImportState.PERSISTING)
            sheet_name = source.sheet_name(descriptor)
            file_id = await self.store.create_file(
                owner_id,
                title or source.default_title(descriptor),
                source.mime_type,
                0,
                1,
                source.source_info(descriptor, owner_id),
            )
            await self._persist_sheet(file_id, sheet_name, 0, table)
            run.advance(ImportState.DONE)
        except Exception as exc:
            run.fail(exc)
            raise

        logger.info(
            "[%s] imported %d rows × %d columns into file %s",
            source.source_type, table.row_count, table.column_count, file_id,
        )
        return ImportOutcome(file_id=file_id, sheet_name=sheet_name, table=table, history=list(run.history))

    async def refresh_import(
        self,
        file_id: int,
        credentials: Optional[Mapping[str, Any]] = None,
        *,
        run: Optional[ImportRun] = None,
    ) -> Union[RefreshOutcome, EmptyResult]:
        """Re-fetch a file's recorded source and replace its rows in place."""
        file = await self.store.get_file_by_id(file_id)
        if file is None:
            raise FileNotFoundError(f"File {file_id} not found")

        source_info = file.get("sourceInfo") or {}
        if source_info.get("refreshMode") == "static":
            raise InvalidSourceError("This import is a static snapshot and cannot be refreshed")
        source = self.source_for(source_info.get("type", ""))
        descriptor = source.parse_descriptor(source_info)

        run = run or ImportRun(source.source_type)
        try:
            table = await self.fetch_table(run, source, descriptor, credentials or {})
            if table.is_empty:
                run.advance(ImportState.DONE)
                return EmptyResult(source.source_type)

            run.advance(ImportState.PERSISTING)
            updated_at = await self.store.update_file_data(
                file_id, [{"name": source.sheet_name(descriptor), "data": table.as_array()}]
            )
            run.advance(ImportState.DONE)
        except Exception as exc:
            run.fail(exc)
            raise

        logger.info("[%s] refreshed file %s: %d rows", source.source_type, file_id, table.row_count)
        stamp = updated_at.isoformat() if hasattr(updated_at, "isoformat") else str(updated_at)
        return RefreshOutcome(file_id=file_id, table=table, updated_at=stamp, history=list(run.history))

    async def import_workbook(
        self,
        owner_id: int,
        filename: str,
        mime_type: str,
        size: int,
        sheets: Sequence[tuple],
    ) -> Dict[str, Any]:
        """Persist an already-parsed workbook: ``[(sheet_name, NormalizedTable), ...]``."""
        file_id = await self.store.create_file(
            owner_id,
            filename,
            mime_type,
            size,
            len(sheets),
            {"type": "excel", "refreshMode": "static"},
        )
        for index, (name, table) in enumerate(sheets):
            await self._persist_sheet(file_id, name, index, table)
        return {
            "id": file_id,
            "originalName": filename,
            "sheetCount": len(sheets),
            "sheets": [name for name, _ in sheets],
        }

    # ── persistence ─────────────────────────────────────────────────────

    async def _persist_sheet(self, file_id: int, name: str, index: int, table: NormalizedTable) -> int:
        # header row first; a sheet with no columns stores nothing
        data = table.as_array() if table.column_count else []
        sheet_id = await self.store.create_sheet(file_id, name, index, len(data), table.column_count)
        for row_index, row in enumerate(data):
            await self.store.create_excel_data(sheet_id, row_index, row)
            if (row_index + 1) % PROGRESS_EVERY == 0:
                logger.info("  Inserted %d/%d rows for sheet '%s'", row_index + 1, len(data), name)
        return sheet_id
