"""
Import API routes: one import endpoint per source kind, the discovery
calls each needs beforehand, and the shared refresh endpoint.

Route prefix: /api/v1
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from api.dependencies import Services, get_file_store, get_orchestrator, get_services
from api.errors import empty_result
from auth.dependencies import get_current_user_id, get_token_claims
from core.errors import EmptyResult, InvalidSourceError
from core.orchestrator import ImportOrchestrator, ImportOutcome, RefreshOutcome
from database.helpers import FileStore
from sources.google_sheets import extract_spreadsheet_id
from sources.sql_dump import check_dump_size, extract_table_names, resolve_dump_path, scan_dangerous_keywords
from utils.files import save_upload
from utils.schemas import (
    GoogleSheetImportRequest,
    GoogleSheetUrlRequest,
    ImportResponse,
    RefreshRequest,
    RefreshResponse,
    SharePointImportRequest,
    SqlConnectionRequest,
    SqlDumpFileRequest,
    SqlDumpImportRequest,
    SqlImportRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["imports"])


def _import_response(outcome: Union[ImportOutcome, EmptyResult], message: str) -> Dict[str, Any]:
    if isinstance(outcome, EmptyResult):
        raise empty_result(outcome)
    return {"message": message, **outcome.to_dict()}


def _sql_source_type(engine: str) -> str:
    return "sql_postgresql" if engine == "postgresql" else "sql_mysql"


# ── SharePoint ─────────────────────────────────────────────────────────


@router.post("/sharepoint/import", response_model=ImportResponse)
async def import_sharepoint(
    req: SharePointImportRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Import a SharePoint list with the service account."""
    outcome = await orchestrator.import_from_source(
        "sharepoint", req.model_dump(by_alias=True), owner_id=user_id, title=req.title
    )
    return _import_response(outcome, "SharePoint list imported successfully")


@router.post("/sharepoint/user/import", response_model=ImportResponse)
async def import_sharepoint_as_user(
    req: SharePointImportRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Import a SharePoint list with the signed-in user's delegated token."""
    outcome = await orchestrator.import_from_source(
        "sharepoint_oauth",
        req.model_dump(by_alias=True),
        {"user_id": user_id},
        owner_id=user_id,
        title=req.title,
    )
    return _import_response(outcome, "SharePoint list imported successfully")


# ── Google Sheets ──────────────────────────────────────────────────────


@router.post("/google-sheets/metadata")
async def google_sheet_metadata(
    req: GoogleSheetUrlRequest,
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    spreadsheet_id = extract_spreadsheet_id(req.url)
    return await services.sheets.get_metadata(spreadsheet_id)


@router.post("/google-sheets/import", response_model=ImportResponse)
async def import_google_sheet(
    req: GoogleSheetImportRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    outcome = await orchestrator.import_from_source(
        "google_sheet", req.model_dump(by_alias=True), owner_id=user_id, title=req.title
    )
    return _import_response(outcome, "Google Sheet imported successfully")


# ── Live SQL ───────────────────────────────────────────────────────────


@router.post("/sql/test-connection")
async def sql_test_connection(
    req: SqlConnectionRequest,
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    logger.info("Testing %s connection to %s:%s, database: %s", req.engine, req.host, req.port or "default", req.database)
    result = await services.sql.test_connection(
        req.engine, req.host, req.port, req.database, req.user, req.password
    )
    return {**result, "type": req.engine}


@router.post("/sql/tables")
async def sql_tables(
    req: SqlConnectionRequest,
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    async with services.sql.connect(
        req.engine, req.host, req.port, req.database, req.user, req.password
    ) as conn:
        tables = await services.sql.list_tables(conn, req.engine)
    return {"tables": tables}


@router.post("/sql/import", response_model=ImportResponse)
async def import_sql_table(
    req: SqlImportRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    descriptor = {
        "engine": req.engine,
        "host": req.host,
        "port": req.port,
        "database": req.database,
        "tableName": req.table_name,
    }
    outcome = await orchestrator.import_from_source(
        _sql_source_type(req.engine),
        descriptor,
        {"user": req.user, "password": req.password},
        owner_id=user_id,
        title=req.title,
    )
    return _import_response(outcome, "SQL table imported successfully")


# ── SQL dumps ──────────────────────────────────────────────────────────


@router.post("/sql-dump/upload")
async def upload_sql_dump(
    file: UploadFile = File(...),
    user_id: int = Depends(get_current_user_id),
    store: FileStore = Depends(get_file_store),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Store a dump file and list the tables found in it."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    content = await file.read()
    check_dump_size(len(content))
    if not content.strip():
        raise InvalidSourceError("SQL file is empty")

    path = await save_upload(services.settings.upload_dir, file.filename, content)
    file_id = await store.create_file(
        user_id,
        file.filename,
        "application/sql",
        len(content),
        0,
        {"type": "sql_dump_upload", "filePath": path, "refreshMode": "static"},
    )
    scan_dangerous_keywords(content.decode("utf-8", errors="replace"))
    tables = await extract_table_names(path)
    logger.info("Stored SQL dump %s as file %s (%d tables)", file.filename, file_id, len(tables))
    return {"fileId": file_id, "fileName": file.filename, "tables": tables}


@router.post("/sql-dump/metadata")
async def sql_dump_metadata(
    req: SqlDumpFileRequest,
    _: int = Depends(get_current_user_id),
    store: FileStore = Depends(get_file_store),
) -> Dict[str, Any]:
    tables = await extract_table_names(await resolve_dump_path(store, req.file_id))
    if not tables:
        raise InvalidSourceError(
            "No tables found in SQL dump. Please ensure the file contains CREATE TABLE or INSERT INTO statements."
        )
    return {"fileId": req.file_id, "tables": tables}


@router.post("/sql-dump/import", response_model=ImportResponse)
async def import_sql_dump_table(
    req: SqlDumpImportRequest,
    user_id: int = Depends(get_current_user_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    outcome = await orchestrator.import_from_source(
        "sql_dump",
        {"originalFileId": req.file_id, "table": req.table},
        owner_id=user_id,
        title=req.title,
    )
    return _import_response(outcome, "SQL table imported successfully")


# ── Refresh ────────────────────────────────────────────────────────────


@router.post("/imports/{file_id}/refresh", response_model=RefreshResponse)
async def refresh_import(
    file_id: int,
    req: Optional[RefreshRequest] = None,
    claims: Dict[str, Any] = Depends(get_token_claims),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """
    Re-fetch the source recorded for *file_id* and replace its rows.

    Live-SQL imports need ``user`` / ``password`` in the body again; the
    password is never stored.
    """
    file = await orchestrator.store.get_file_by_id(file_id)
    if file is None:
        raise FileNotFoundError(f"File {file_id} not found")
    if file["userId"] != claims["user_id"] and claims.get("role") != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your file")

    credentials: Dict[str, Any] = {"user_id": claims["user_id"]}
    if req is not None and req.user:
        credentials.update(user=req.user, password=req.password or "")

    outcome: Union[RefreshOutcome, EmptyResult] = await orchestrator.refresh_import(file_id, credentials)
    if isinstance(outcome, EmptyResult):
        raise empty_result(outcome)
    return {"message": "Data refreshed successfully", **outcome.to_dict()}
