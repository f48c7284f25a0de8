"""
Database helper functions: the files → sheets → rows store plus users,
dashboards and the audit logs.

``FileStore`` is the persistence collaborator handed to the import
orchestrator.  The module-level helpers take an explicit ``AsyncSession``
and only flush; the request's ``get_db_session`` dependency commits.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.models import (
    DataConfigurationLog,
    Dashboard,
    ExcelData,
    ExcelSheet,
    FileUploadLog,
    UploadedFile,
    User,
)
from database.session import run_in_session

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def file_to_dict(row: UploadedFile) -> Dict[str, Any]:
    return {
        "id": row.id,
        "userId": row.user_id,
        "originalName": row.original_name,
        "mimeType": row.mime_type,
        "fileSize": row.file_size,
        "sheetCount": row.sheet_count,
        "sourceInfo": row.source_info or {},
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
    }


# ── Files → sheets → rows ───────────────────────────────────────────────


class FileStore:
    """
    Persistence for imported tables.

    Parameters
    ----------
    db_session : AsyncSession, optional
        Reuse the caller's session (flush only).  Without one every call
        runs in its own committed session.
    """

    def __init__(self, db_session: Optional[AsyncSession] = None):
        self._db_session = db_session

    async def create_file(
        self,
        owner_id: int,
        name: str,
        mime_type: str,
        size: int,
        sheet_count: int,
        source_info: Optional[Dict[str, Any]] = None,
    ) -> int:
        async def _create(session: AsyncSession) -> int:
            row = UploadedFile(
                user_id=owner_id,
                original_name=name,
                mime_type=mime_type,
                file_size=size,
                sheet_count=sheet_count,
                source_info=source_info or {},
            )
            session.add(row)
            await session.flush()
            return row.id

        return await run_in_session(self._db_session, _create)

    async def create_sheet(
        self,
        file_id: int,
        name: str,
        index: int,
        row_count: int,
        column_count: int,
    ) -> int:
        async def _create(session: AsyncSession) -> int:
            row = ExcelSheet(
                file_id=file_id,
                sheet_name=name,
                sheet_index=index,
                row_count=row_count,
                column_count=column_count,
            )
            session.add(row)
            await session.flush()
            return row.id

        return await run_in_session(self._db_session, _create)

    async def create_excel_data(self, sheet_id: int, row_index: int, row_values: Sequence[Any]) -> None:
        async def _create(session: AsyncSession) -> None:
            session.add(ExcelData(sheet_id=sheet_id, row_index=row_index, row_data=list(row_values)))

        await run_in_session(self._db_session, _create)

    async def get_file_by_id(self, file_id: int) -> Optional[Dict[str, Any]]:
        async def _get(session: AsyncSession):
            row = await session.get(UploadedFile, file_id)
            return file_to_dict(row) if row else None

        return await run_in_session(self._db_session, _get)

    async def update_file_data(self, file_id: int, sheets: List[Dict[str, Any]]) -> datetime:
        """
        Replace the rows of each named sheet.  ``sheets`` is
        ``[{"name": ..., "data": [[...], ...]}]``; a sheet is matched by
        name, falling back to position.  Returns the new ``updated_at``.
        """

        async def _update(session: AsyncSession) -> datetime:
            result = await session.execute(
                select(UploadedFile)
                .options(selectinload(UploadedFile.sheets))
                .where(UploadedFile.id == file_id)
            )
            file_row = result.scalar_one_or_none()
            if file_row is None:
                raise FileNotFoundError(f"File {file_id} not found")

            by_name = {sheet.sheet_name: sheet for sheet in file_row.sheets}
            for position, payload in enumerate(sheets):
                sheet = by_name.get(payload.get("name"))
                if sheet is None and position < len(file_row.sheets):
                    sheet = file_row.sheets[position]
                if sheet is None:
                    logger.warning("File %s has no sheet for '%s'; skipped", file_id, payload.get("name"))
                    continue

                data = payload.get("data") or []
                await session.execute(delete(ExcelData).where(ExcelData.sheet_id == sheet.id))
                for row_index, row_values in enumerate(data):
                    session.add(ExcelData(sheet_id=sheet.id, row_index=row_index, row_data=list(row_values)))
                sheet.row_count = len(data)
                sheet.column_count = max((len(r) for r in data), default=0)

            file_row.updated_at = _utcnow()
            await session.flush()
            return file_row.updated_at

        return await run_in_session(self._db_session, _update)

    # ── Listing / deletion ──────────────────────────────────────────────

    async def list_files(self, owner_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """All files (admin) or one owner's, newest first, with sheet names."""

        async def _list(session: AsyncSession):
            stmt = select(UploadedFile).options(selectinload(UploadedFile.sheets))
            if owner_id is not None:
                stmt = stmt.where(UploadedFile.user_id == owner_id)
            result = await session.execute(stmt.order_by(UploadedFile.created_at.desc()))
            files = []
            for row in result.scalars().all():
                entry = file_to_dict(row)
                entry["sheets"] = [
                    {
                        "id": s.id,
                        "name": s.sheet_name,
                        "index": s.sheet_index,
                        "rowCount": s.row_count,
                        "columnCount": s.column_count,
                    }
                    for s in row.sheets
                ]
                files.append(entry)
            return files

        return await run_in_session(self._db_session, _list)

    async def get_file_data(self, file_id: int) -> Optional[Dict[str, Any]]:
        """File metadata plus every sheet's rows in ``row_index`` order."""

        async def _get(session: AsyncSession):
            row = await session.get(UploadedFile, file_id, options=[selectinload(UploadedFile.sheets)])
            if row is None:
                return None
            entry = file_to_dict(row)
            entry["sheets"] = []
            for sheet in row.sheets:
                result = await session.execute(
                    select(ExcelData.row_data)
                    .where(ExcelData.sheet_id == sheet.id)
                    .order_by(ExcelData.row_index)
                )
                entry["sheets"].append(
                    {"name": sheet.sheet_name, "index": sheet.sheet_index, "data": list(result.scalars().all())}
                )
            return entry

        return await run_in_session(self._db_session, _get)

    async def delete_file(self, file_id: int) -> bool:
        async def _delete(session: AsyncSession) -> bool:
            result = await session.execute(delete(UploadedFile).where(UploadedFile.id == file_id))
            return bool(result.rowcount)

        return await run_in_session(self._db_session, _delete)

    # ── Logs ───────────────────────────────────────────────────────────

    async def create_upload_log(
        self,
        file_id: int,
        file_path: str,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        now = datetime.now()

        async def _create(session: AsyncSession) -> None:
            session.add(
                FileUploadLog(
                    file_id=file_id,
                    upload_date=now.date(),
                    upload_time=now.time().replace(microsecond=0),
                    file_path=file_path,
                    status=status,
                    error_message=error_message,
                )
            )

        await run_in_session(self._db_session, _create)


# ── Users ──────────────────────────────────────────────────────────────


def user_to_dict(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role}


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, name: str, email: str, password_hash: str, role: str = "USER") -> User:
    user = User(name=name, email=email, password=password_hash, role=role)
    session.add(user)
    await session.flush()
    return user


async def list_users(session: AsyncSession) -> List[Dict[str, Any]]:
    result = await session.execute(select(User).order_by(User.id))
    return [user_to_dict(u) for u in result.scalars().all()]


async def delete_user(session: AsyncSession, user_id: int) -> bool:
    result = await session.execute(delete(User).where(User.id == user_id))
    return bool(result.rowcount)


# ── Dashboards ─────────────────────────────────────────────────────────


def dashboard_to_dict(row: Dashboard) -> Dict[str, Any]:
    return {
        "id": row.id,
        "userId": row.user_id,
        "name": row.name,
        "dataModel": row.data_model,
        "chartConfigs": row.chart_configs,
        "createdAt": _iso(row.created_at),
    }


async def create_dashboard(
    session: AsyncSession,
    user_id: int,
    name: str,
    data_model: Any,
    chart_configs: Any,
) -> Dict[str, Any]:
    row = Dashboard(user_id=user_id, name=name, data_model=data_model, chart_configs=chart_configs)
    session.add(row)
    await session.flush()
    return dashboard_to_dict(row)


async def list_dashboards(session: AsyncSession, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
    stmt = select(Dashboard).order_by(Dashboard.created_at.desc())
    if user_id is not None:
        stmt = stmt.where(Dashboard.user_id == user_id)
    result = await session.execute(stmt)
    return [dashboard_to_dict(d) for d in result.scalars().all()]


async def delete_dashboard(session: AsyncSession, dashboard_id: int, user_id: Optional[int] = None) -> bool:
    stmt = delete(Dashboard).where(Dashboard.id == dashboard_id)
    if user_id is not None:
        stmt = stmt.where(Dashboard.user_id == user_id)
    result = await session.execute(stmt)
    return bool(result.rowcount)


# ── Configuration log ──────────────────────────────────────────────────


async def create_config_log(
    session: AsyncSession,
    file_name: str,
    columns: Any,
    join_configs: Optional[List[Dict[str, Any]]] = None,
) -> None:
    now = datetime.now()
    session.add(
        DataConfigurationLog(
            file_name=file_name,
            config_date=now.date(),
            config_time=now.time().replace(microsecond=0),
            columns=columns,
            join_configs=join_configs,
        )
    )
    await session.flush()
