"""
Pydantic schemas: source descriptors and API request / response bodies.

Descriptors serialise with camelCase aliases because they are stored
verbatim in ``uploaded_files.source_info`` and read back by the frontend.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ═══════════════════════════════════════════════════════════════════════════════
# Source descriptors
# ═══════════════════════════════════════════════════════════════════════════════


class SharePointListSource(_Camel):
    site_id: str = Field(..., min_length=1)
    list_id: str = Field(..., min_length=1)
    site_name: Optional[str] = None
    list_name: Optional[str] = None
    select: Optional[str] = None
    filter: Optional[str] = None


class SharePointUserListSource(SharePointListSource):
    """Set only when read back from a stored import: the user whose token it runs with."""

    user_id: Optional[int] = None


class GoogleSheetSource(_Camel):
    spreadsheet_id: str = Field(..., min_length=1)
    sheet_name: str = Field(..., min_length=1)
    range: Optional[str] = None


class SqlTableSource(_Camel):
    engine: Literal["mysql", "mariadb", "postgresql"]
    host: str = Field(..., min_length=1)
    port: Optional[int] = None
    database: str = Field(..., min_length=1)
    table_name: str = Field(..., min_length=1)


class SqlDumpSource(_Camel):
    original_file_id: int
    table: str = Field(..., min_length=1)


class SqlCredentials(BaseModel):
    user: str = Field(..., min_length=1)
    password: str = ""


# ═══════════════════════════════════════════════════════════════════════════════
# Auth / users / dashboards
# ═══════════════════════════════════════════════════════════════════════════════


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=4, max_length=128)


class LoginRequest(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    token: Optional[str] = None


class DashboardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    data_model: Dict[str, Any] | List[Any] = Field(..., alias="dataModel")
    chart_configs: Dict[str, Any] | List[Any] = Field(..., alias="chartConfigs")

    model_config = ConfigDict(populate_by_name=True)


class ConfigLogRequest(BaseModel):
    file_name: str = Field(..., alias="fileName")
    columns: List[Any] | Dict[str, Any]
    join_configs: Optional[List[Dict[str, Any]]] = Field(default=None, alias="joinConfigs")

    model_config = ConfigDict(populate_by_name=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Imports
# ═══════════════════════════════════════════════════════════════════════════════


class SharePointSiteRequest(_Camel):
    site_id: str = Field(..., min_length=1)


class SharePointListRequest(SharePointSiteRequest):
    list_id: str = Field(..., min_length=1)


class SharePointImportRequest(SharePointListSource):
    title: Optional[str] = None


class GoogleSheetUrlRequest(BaseModel):
    url: str


class GoogleSheetImportRequest(GoogleSheetSource):
    title: Optional[str] = None


class SqlConnectionRequest(_Camel):
    engine: Literal["mysql", "mariadb", "postgresql"] = Field(..., alias="type")
    host: str
    port: Optional[int] = None
    database: str
    user: str
    password: str = ""


class SqlImportRequest(SqlConnectionRequest):
    table_name: str
    title: Optional[str] = None


class SqlDumpFileRequest(_Camel):
    file_id: int


class SqlDumpImportRequest(_Camel):
    file_id: int
    table: str
    title: Optional[str] = None


class RefreshRequest(_Camel):
    """Live-SQL refresh needs the credentials again; other sources send nothing."""

    user: Optional[str] = None
    password: Optional[str] = None


class ImportResponse(_Camel):
    message: str
    file_id: int
    sheet_name: str
    headers: List[str]
    row_count: int
    column_count: int
    data: List[List[Any]]


class RefreshResponse(_Camel):
    message: str
    row_count: int
    updated_at: str
    data: List[List[Any]]
