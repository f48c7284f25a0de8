"""
SQLAlchemy ORM models for users, dashboards and the files → sheets → rows store.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)  # bcrypt hash
    role = Column(String(10), nullable=False, default="USER")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    dashboards = relationship("Dashboard", back_populates="user", cascade="all, delete-orphan")
    files = relationship("UploadedFile", back_populates="user", cascade="all, delete-orphan")
    sharepoint_connection = relationship(
        "SharePointConnection", uselist=False, cascade="all, delete-orphan"
    )


class Dashboard(Base):
    __tablename__ = "dashboards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    data_model = Column(JSONB, nullable=False)
    chart_configs = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="dashboards")


class UploadedFile(Base):
    __tablename__ = "uploaded_files"
    __table_args__ = (Index("idx_uploaded_files_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    original_name = Column(String(255), nullable=False)
    mime_type = Column(String(100))
    file_size = Column(BigInteger)
    sheet_count = Column(Integer, default=0)
    source_info = Column(JSONB, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="files")
    sheets = relationship(
        "ExcelSheet",
        back_populates="file",
        cascade="all, delete-orphan",
        order_by="ExcelSheet.sheet_index",
    )


class ExcelSheet(Base):
    __tablename__ = "excel_sheets"
    __table_args__ = (Index("idx_excel_sheets_file_sheet", "file_id", "sheet_index"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("uploaded_files.id", ondelete="CASCADE"), nullable=False, index=True)
    sheet_name = Column(String(255), nullable=False)
    sheet_index = Column(Integer, nullable=False)
    row_count = Column(Integer, default=0)
    column_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    file = relationship("UploadedFile", back_populates="sheets")
    rows = relationship("ExcelData", back_populates="sheet", cascade="all, delete-orphan")


class ExcelData(Base):
    __tablename__ = "excel_data"
    __table_args__ = (Index("idx_excel_data_sheet_row", "sheet_id", "row_index"),)

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    sheet_id = Column(Integer, ForeignKey("excel_sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    row_index = Column(Integer, nullable=False)
    row_data = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    sheet = relationship("ExcelSheet", back_populates="rows")


class FileUploadLog(Base):
    __tablename__ = "file_upload_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # 0 when the upload failed before a file row existed, so no FK
    file_id = Column(Integer, nullable=False, index=True)
    upload_date = Column(Date, nullable=False)
    upload_time = Column(Time, nullable=False)
    file_path = Column(String(500))
    status = Column(String(10), nullable=False, default="SUCCESS")
    error_message = Column(Text)


class DataConfigurationLog(Base):
    __tablename__ = "data_configuration_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(255), nullable=False)
    config_date = Column(Date, nullable=False)
    config_time = Column(Time, nullable=False)
    columns = Column(JSONB, nullable=False)
    join_configs = Column(JSONB)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class SharePointConnection(Base):
    __tablename__ = "sharepoint_connections"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    tenant_id = Column(String(255))
    access_token = Column(Text, nullable=False)   # AES-256-CBC, "iv:data" hex
    refresh_token = Column(Text, nullable=False)  # AES-256-CBC, "iv:data" hex
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    connected_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
