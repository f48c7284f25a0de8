"""
Tests for the live SQL source: guard rails, error sanitizing and the
read path against a mocked SQLAlchemy engine.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import InvalidSourceError, RemoteApiError
from core.orchestrator import ImportOrchestrator
from sources.sql_database import (
    MAX_ROWS,
    SqlDatabaseClient,
    SqlDatabaseSource,
    build_url,
    sanitize_db_error,
    validate_table_name,
)

DESCRIPTOR = {
    "engine": "mysql",
    "host": "db.internal",
    "database": "shop",
    "tableName": "customers",
}


def _result(keys, rows):
    result = MagicMock()
    result.keys.return_value = keys
    result.all.return_value = rows
    return result


def _engine_factory(conn=None, connect_error=None):
    engine = MagicMock()
    if connect_error is not None:
        engine.connect = AsyncMock(side_effect=connect_error)
    else:
        engine.connect = AsyncMock(return_value=conn)
    engine.dispose = AsyncMock()
    factory = MagicMock(return_value=engine)
    return factory, engine


def _connection(result):
    conn = MagicMock()
    conn.execute = AsyncMock(return_value=result)
    conn.close = AsyncMock()
    return conn


class TestGuardRails:
    @pytest.mark.parametrize("name", ["customers", "order_items", "log-2024", "T1"])
    def test_valid_names(self, name):
        assert validate_table_name(name) == name

    @pytest.mark.parametrize("name", ["", "users; DROP TABLE x", "a b", "schema.table", "`t`"])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidSourceError):
            validate_table_name(name)

    def test_bad_table_name_rejected_before_connecting(self):
        factory, _ = _engine_factory()
        source = SqlDatabaseSource("mysql", SqlDatabaseClient(factory))
        with pytest.raises(InvalidSourceError):
            source.parse_descriptor({**DESCRIPTOR, "tableName": "x;y"})
        factory.assert_not_called()

    def test_build_url_defaults_port(self):
        url = build_url("postgresql", "pg", None, "db", "u", "p")
        assert url.drivername == "postgresql+asyncpg"
        assert url.port == 5432
        assert build_url("mariadb", "m", None, "db", "u", "").drivername == "mysql+aiomysql"

    def test_unsupported_engine(self):
        with pytest.raises(InvalidSourceError):
            build_url("oracle", "h", 1521, "db", "u", "p")


class TestSanitize:
    @pytest.mark.parametrize(
        "exc, expected",
        [
            (ConnectionRefusedError("nope"), "Unable to connect"),
            (Exception("(1045, \"Access denied for user 'x'@'y'\")"), "Authentication failed"),
            (Exception('password authentication failed for user "x"'), "Authentication failed"),
            (Exception("(1049, \"Unknown database 'nope'\")"), "Database not found"),
            (Exception('database "nope" does not exist'), "Database not found"),
            (asyncio.TimeoutError(), "Connection timeout"),
            (Exception("something odd at 10.0.0.5"), "Database operation failed"),
        ],
    )
    def test_messages(self, exc, expected):
        message = sanitize_db_error(exc)
        assert message.startswith(expected)
        assert "10.0.0.5" not in message


class TestClient:
    @pytest.mark.asyncio
    async def test_connection_failure_is_reported_not_raised(self):
        factory, engine = _engine_factory(connect_error=ConnectionRefusedError("refused"))
        result = await SqlDatabaseClient(factory).test_connection("mysql", "h", None, "db", "u", "p")
        assert result == {
            "success": False,
            "message": "Unable to connect to database server. Please check host and port.",
        }
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_success(self):
        conn = _connection(_result(["1"], [(1,)]))
        factory, engine = _engine_factory(conn)
        result = await SqlDatabaseClient(factory).test_connection("postgresql", "h", None, "db", "u", "p")
        assert result == {"success": True, "message": "PostgreSQL connection successful"}
        conn.close.assert_awaited_once()
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_read_table_is_bounded_and_quoted(self):
        conn = _connection(_result(["id"], [(1,)]))
        client = SqlDatabaseClient(MagicMock())

        await client.read_table(conn, "postgresql", "orders", limit=10_000_000)

        statement, params = conn.execute.await_args.args
        assert str(statement) == 'SELECT * FROM "orders" LIMIT :limit'
        assert params == {"limit": MAX_ROWS}


class TestSqlDatabaseSource:
    @pytest.mark.asyncio
    async def test_import_keeps_primitive_values(self, file_store):
        conn = _connection(_result(["id", "name", "active"], [(1, "Alice", True), (2, None, False)]))
        factory, engine = _engine_factory(conn)
        source = SqlDatabaseSource("mysql", SqlDatabaseClient(factory))
        orchestrator = ImportOrchestrator({"sql_mysql": source}, file_store)

        outcome = await orchestrator.import_from_source(
            "sql_mysql", DESCRIPTOR, {"user": "reader", "password": "pw"}, owner_id=2
        )

        assert outcome.table.headers == ["id", "name", "active"]
        assert outcome.table.rows == [[1, "Alice", True], [2, "", False]]
        info = file_store.files[outcome.file_id]["sourceInfo"]
        assert info["type"] == "sql_mysql"
        assert info["port"] == 3306
        assert "password" not in info and "user" not in info
        assert file_store.files[outcome.file_id]["originalName"] == "MYSQL: customers"
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_credentials_required(self, file_store):
        factory, _ = _engine_factory()
        orchestrator = ImportOrchestrator({"sql_mysql": SqlDatabaseSource("mysql", SqlDatabaseClient(factory))}, file_store)
        with pytest.raises(InvalidSourceError):
            await orchestrator.import_from_source("sql_mysql", DESCRIPTOR, {}, owner_id=1)
        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_failure_is_sanitized(self, file_store):
        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=OSError("Access denied for user 'reader'@'10.1.1.1'"))
        conn.close = AsyncMock()
        factory, _ = _engine_factory(conn)
        orchestrator = ImportOrchestrator({"sql_mysql": SqlDatabaseSource("mysql", SqlDatabaseClient(factory))}, file_store)

        with pytest.raises(RemoteApiError) as exc_info:
            await orchestrator.import_from_source("sql_mysql", DESCRIPTOR, {"user": "reader"}, owner_id=1)

        assert exc_info.value.message == "Authentication failed. Please check username and password."
        conn.close.assert_awaited_once()
        assert file_store.calls == []
