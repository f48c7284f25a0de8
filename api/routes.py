"""
REST API routes: Excel upload, files, dashboards, users and admin views.

Route prefix: /api/v1
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import Services, db_session, get_file_store, get_orchestrator, get_services
from auth.dependencies import get_current_user_id, get_token_claims, require_admin
from core.errors import InvalidSourceError
from core.orchestrator import ImportOrchestrator
from database.helpers import (
    FileStore,
    create_config_log,
    create_dashboard,
    delete_dashboard,
    delete_user,
    list_dashboards,
    list_users,
)
from sources.excel import is_excel_file, read_workbook
from utils.files import remove_quietly, save_upload
from utils.schemas import ConfigLogRequest, DashboardIn

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Excel upload ───────────────────────────────────────────────────────


@router.post("/upload")
async def upload_workbook(
    file: UploadFile = File(...),
    user_id: int = Depends(get_current_user_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Store every sheet of an Excel workbook as rows."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    if not is_excel_file(file.filename, file.content_type):
        raise InvalidSourceError("Only Excel files are supported")

    content = await file.read()
    path = await save_upload(services.settings.upload_dir, file.filename, content)
    try:
        sheets = await read_workbook(path)
        logger.info("Processing file: %s with %d sheets", file.filename, len(sheets))
        result = await orchestrator.import_workbook(
            user_id,
            file.filename,
            file.content_type or "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            len(content),
            sheets,
        )
        await orchestrator.store.create_upload_log(result["id"], path, "SUCCESS")
    except Exception as exc:
        # the request transaction rolls back, so the failure is logged separately
        await FileStore().create_upload_log(0, path, "FAILED", str(exc))
        raise
    finally:
        remove_quietly(path)

    return {"message": "File uploaded and data stored successfully", "file": result}


# ── Files ──────────────────────────────────────────────────────────────


@router.get("/files")
async def list_my_files(
    user_id: int = Depends(get_current_user_id),
    store: FileStore = Depends(get_file_store),
) -> List[Dict[str, Any]]:
    return await store.list_files(user_id)


@router.get("/files/{file_id}")
async def get_file(
    file_id: int,
    claims: Dict[str, Any] = Depends(get_token_claims),
    store: FileStore = Depends(get_file_store),
) -> Dict[str, Any]:
    data = await store.get_file_data(file_id)
    if data is None:
        raise FileNotFoundError(f"File {file_id} not found")
    if data["userId"] != claims["user_id"] and claims.get("role") != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your file")
    return data


@router.delete("/files/{file_id}")
async def delete_file(
    file_id: int,
    claims: Dict[str, Any] = Depends(get_token_claims),
    store: FileStore = Depends(get_file_store),
) -> Dict[str, str]:
    file = await store.get_file_by_id(file_id)
    if file is None:
        raise FileNotFoundError(f"File {file_id} not found")
    if file["userId"] != claims["user_id"] and claims.get("role") != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your file")
    await store.delete_file(file_id)
    return {"message": "File deleted"}


# ── Configuration log ──────────────────────────────────────────────────


@router.post("/log-config")
async def log_config(
    req: ConfigLogRequest,
    _: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    await create_config_log(session, req.file_name, req.columns, req.join_configs)
    return {"message": "Configuration logged successfully"}


# ── Dashboards ─────────────────────────────────────────────────────────


@router.post("/dashboards")
async def save_dashboard(
    req: DashboardIn,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    return await create_dashboard(session, user_id, req.name, req.data_model, req.chart_configs)


@router.get("/dashboards")
async def get_my_dashboards(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(db_session),
) -> List[Dict[str, Any]]:
    return await list_dashboards(session, user_id)


@router.delete("/dashboards/{dashboard_id}")
async def remove_dashboard(
    dashboard_id: int,
    claims: Dict[str, Any] = Depends(get_token_claims),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    owner = None if claims.get("role") == "ADMIN" else claims["user_id"]
    if not await delete_dashboard(session, dashboard_id, owner):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dashboard not found")
    return {"message": "Dashboard deleted"}


# ── Users / admin ──────────────────────────────────────────────────────


@router.get("/users")
async def get_users(
    _: int = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
) -> List[Dict[str, Any]]:
    return await list_users(session)


@router.delete("/users/{user_id}")
async def remove_user(
    user_id: int,
    _: int = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    if not await delete_user(session, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return {"message": "User deleted successfully"}


@router.get("/admin/dashboards")
async def all_dashboards(
    _: int = Depends(require_admin),
    session: AsyncSession = Depends(db_session),
) -> List[Dict[str, Any]]:
    return await list_dashboards(session)


@router.get("/admin/uploads")
async def all_uploads(
    _: int = Depends(require_admin),
    store: FileStore = Depends(get_file_store),
) -> List[Dict[str, Any]]:
    return await store.list_files()


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}
