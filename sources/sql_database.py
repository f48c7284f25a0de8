"""
Live MySQL / PostgreSQL tables.

Each request builds its own ``AsyncEngine`` with ``NullPool`` and disposes
of it afterwards; nothing is pooled across requests and credentials are
used once and dropped.  Guard rails:

  • table names restricted to ``[A-Za-z0-9_-]``
  • at most ``MAX_ROWS`` rows per query
  • ``CONNECT_TIMEOUT`` / ``QUERY_TIMEOUT`` seconds per connection / query
  • driver errors are reduced to a handful of user-safe messages
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from core.errors import InvalidSourceError, RemoteApiError
from core.normalizer import ColumnSpec, rows_to_items
from sources.base import SourceSession, TableSource
from utils.schemas import SqlTableSource

logger = logging.getLogger(__name__)

MAX_ROWS = 5000
CONNECT_TIMEOUT = 10
QUERY_TIMEOUT = 30

DRIVERS = {
    "mysql": "mysql+aiomysql",
    "mariadb": "mysql+aiomysql",
    "postgresql": "postgresql+asyncpg",
}
DEFAULT_PORTS = {"mysql": 3306, "mariadb": 3306, "postgresql": 5432}

_TABLE_NAME = re.compile(r"^[A-Za-z0-9_-]+$")

_DB_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def validate_table_name(name: str) -> str:
    if not name or not _TABLE_NAME.match(name):
        raise InvalidSourceError("Invalid table name")
    return name


def sanitize_db_error(exc: BaseException) -> str:
    """Map a driver error onto a message that leaks no connection internals."""
    message = str(exc).lower()
    if isinstance(exc, ConnectionRefusedError) or "connection refused" in message or "econnrefused" in message:
        return "Unable to connect to database server. Please check host and port."
    if (
        "access denied" in message
        or "authentication failed" in message
        or "password authentication" in message
    ):
        return "Authentication failed. Please check username and password."
    if "unknown database" in message or ("database" in message and "does not exist" in message):
        return "Database not found. Please check database name."
    if isinstance(exc, asyncio.TimeoutError) or "timeout" in message or "timed out" in message:
        return "Connection timeout. Please check your network and database availability."
    return "Database operation failed. Please check your connection settings."


def _quote(engine: str, identifier: str) -> str:
    return f'"{identifier}"' if engine == "postgresql" else f"`{identifier}`"


def build_url(engine: str, host: str, port: Optional[int], database: str, user: str, password: str) -> URL:
    if engine not in DRIVERS:
        raise InvalidSourceError(f"Unsupported database engine: {engine}")
    return URL.create(
        DRIVERS[engine],
        username=user,
        password=password or None,
        host=host,
        port=port or DEFAULT_PORTS[engine],
        database=database,
    )


def create_engine_for(engine: str, url: URL) -> AsyncEngine:
    if engine == "postgresql":
        connect_args: Dict[str, Any] = {"timeout": CONNECT_TIMEOUT, "command_timeout": QUERY_TIMEOUT}
    else:
        connect_args = {"connect_timeout": CONNECT_TIMEOUT}
    return create_async_engine(url, poolclass=NullPool, connect_args=connect_args)


class SqlDatabaseClient:
    """Connection test, table listing and bounded table reads."""

    def __init__(self, engine_factory: Callable[[str, URL], AsyncEngine] = create_engine_for):
        self._engine_factory = engine_factory

    @asynccontextmanager
    async def connect(
        self,
        engine: str,
        host: str,
        port: Optional[int],
        database: str,
        user: str,
        password: str,
    ) -> AsyncIterator[AsyncConnection]:
        url = build_url(engine, host, port, database, user, password)
        db_engine = self._engine_factory(engine, url)
        try:
            try:
                conn = await asyncio.wait_for(db_engine.connect(), CONNECT_TIMEOUT)
            except _DB_ERRORS as exc:
                logger.error("Database connection failed (%s@%s/%s): %s", engine, host, database, exc)
                raise RemoteApiError(sanitize_db_error(exc)) from exc
            try:
                yield conn
            finally:
                await conn.close()
        finally:
            await db_engine.dispose()

    async def _execute(self, conn: AsyncConnection, statement: str, params: Optional[Dict[str, Any]] = None):
        try:
            return await asyncio.wait_for(conn.execute(text(statement), params or {}), QUERY_TIMEOUT)
        except _DB_ERRORS as exc:
            logger.error("Database query failed: %s", exc)
            raise RemoteApiError(sanitize_db_error(exc)) from exc

    async def test_connection(self, engine: str, host: str, port: Optional[int], database: str,
                              user: str, password: str) -> Dict[str, Any]:
        """Never raises for connection problems; the result carries a safe message."""
        label = "PostgreSQL" if engine == "postgresql" else "MySQL"
        try:
            async with self.connect(engine, host, port, database, user, password) as conn:
                await self._execute(conn, "SELECT 1")
        except RemoteApiError as exc:
            return {"success": False, "message": exc.message}
        return {"success": True, "message": f"{label} connection successful"}

    async def list_tables(self, conn: AsyncConnection, engine: str) -> List[str]:
        if engine == "postgresql":
            result = await self._execute(
                conn,
                "SELECT table_name FROM information_schema.tables "
                "WHERE table_schema = 'public' AND table_type = 'BASE TABLE' "
                "ORDER BY table_name",
            )
        else:
            result = await self._execute(conn, "SHOW TABLES")
        return [row[0] for row in result.all()]

    async def read_table(
        self, conn: AsyncConnection, engine: str, table_name: str, limit: int = MAX_ROWS
    ) -> Dict[str, Any]:
        """``{headers, rows}`` for at most ``min(limit, MAX_ROWS)`` rows."""
        validate_table_name(table_name)
        row_limit = max(0, min(limit, MAX_ROWS))
        result = await self._execute(
            conn,
            f"SELECT * FROM {_quote(engine, table_name)} LIMIT :limit",
            {"limit": row_limit},
        )
        headers = list(result.keys())
        rows = [list(row) for row in result.all()]
        logger.info("Read %d rows from %s", len(rows), table_name)
        return {"headers": headers, "rows": rows}


class _TableSession(SourceSession):
    def __init__(self, client: SqlDatabaseClient, conn: AsyncConnection, engine: str, table_name: str):
        self._client = client
        self._conn = conn
        self._engine = engine
        self._table_name = table_name
        self._rows: List[List[Any]] = []

    async def columns(self) -> List[ColumnSpec]:
        data = await self._client.read_table(self._conn, self._engine, self._table_name)
        self._rows = data["rows"]
        return [ColumnSpec(name=str(i), display_name=h) for i, h in enumerate(data["headers"])]

    async def records(self, columns: List[ColumnSpec]) -> List[Mapping[str, Any]]:
        return rows_to_items(self._rows)


class SqlDatabaseSource(TableSource):
    """One instance per dialect family; ``mariadb`` rides on the MySQL one."""

    descriptor_model = SqlTableSource

    def __init__(self, dialect: str, client: Optional[SqlDatabaseClient] = None):
        if dialect not in ("mysql", "postgresql"):
            raise ValueError(f"Unsupported dialect: {dialect}")
        self.dialect = dialect
        self._client = client or SqlDatabaseClient()

    @property
    def source_type(self) -> str:
        return f"sql_{self.dialect}"

    @property
    def mime_type(self) -> str:
        return f"application/x-{self.dialect}"

    def sheet_name(self, descriptor: SqlTableSource) -> str:
        return descriptor.table_name

    def default_title(self, descriptor: SqlTableSource) -> str:
        return f"{descriptor.engine.upper()}: {descriptor.table_name}"

    def parse_descriptor(self, payload: Mapping[str, Any]) -> SqlTableSource:
        descriptor = super().parse_descriptor(payload)
        validate_table_name(descriptor.table_name)
        return descriptor

    def source_info(self, descriptor: SqlTableSource, owner_id: Optional[int] = None) -> Dict[str, Any]:
        info = super().source_info(descriptor, owner_id)
        info["port"] = descriptor.port or DEFAULT_PORTS[descriptor.engine]
        return info

    @asynccontextmanager
    async def open(self, descriptor: SqlTableSource, credentials: Mapping[str, Any]) -> AsyncIterator[SourceSession]:
        user = (credentials or {}).get("user")
        if not user:
            raise InvalidSourceError("Database credentials (user, password) are required")
        logger.info(
            "Importing table '%s' from %s database %s", descriptor.table_name, descriptor.engine, descriptor.database
        )
        async with self._client.connect(
            descriptor.engine,
            descriptor.host,
            descriptor.port,
            descriptor.database,
            user,
            credentials.get("password") or "",
        ) as conn:
            yield _TableSession(self._client, conn, descriptor.engine, descriptor.table_name)
