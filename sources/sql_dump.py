"""
SQL dump files, read without executing anything.

Statements are split on ``;`` (outside quotes, with comments removed) and
each one is parsed with ``sqlglot`` in the MySQL dialect.  Only two shapes
matter:

  • ``CREATE TABLE``: supplies the column names
  • ``INSERT INTO``: supplies the rows (and the columns, if no CREATE)

Anything the parser rejects is skipped.  Dump files routinely carry
dialect quirks (``LOCK TABLES``, conditional comments, engine options)
that have no bearing on the data.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from core.errors import InvalidSourceError
from core.normalizer import ColumnSpec, rows_to_items
from sources.base import SourceSession, TableSource
from utils.schemas import SqlDumpSource

logger = logging.getLogger(__name__)

MAX_DUMP_BYTES = 10 * 1024 * 1024
DANGEROUS_KEYWORDS = ("DROP", "DELETE FROM", "TRUNCATE", "ALTER", "UPDATE")
DIALECT = "mysql"


# ── File access ──────────────────────────────────────────────────────────


def check_dump_size(size: int) -> None:
    if size > MAX_DUMP_BYTES:
        raise InvalidSourceError(
            f"File size ({round(size / 1024 / 1024)}MB) exceeds maximum allowed size (10MB)"
        )


def read_dump(path: str) -> str:
    """Read a dump from disk; oversize and empty files are rejected."""
    check_dump_size(os.path.getsize(path))
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        content = fh.read()
    if not content.strip():
        raise InvalidSourceError("SQL file is empty")
    return content


def scan_dangerous_keywords(sql: str) -> List[str]:
    """Warn about destructive statements.  Parsing goes ahead regardless."""
    upper = sql.upper()
    found = [kw for kw in DANGEROUS_KEYWORDS if kw in upper]
    for kw in found:
        logger.warning("SQL dump contains potentially dangerous keyword: %s", kw)
    return found


# ── Statement splitting ─────────────────────────────────────────────────


def split_statements(sql: str) -> List[str]:
    """
    Split on ``;`` outside of quoted strings and identifiers, dropping
    ``--``, ``#`` and ``/* */`` comments on the way.
    """
    statements: List[str] = []
    buf: List[str] = []
    quote: Optional[str] = None
    i, n = 0, len(sql)

    while i < n:
        ch = sql[i]
        nxt = sql[i + 1] if i + 1 < n else ""

        if quote:
            buf.append(ch)
            if ch == "\\" and quote != "`" and nxt:
                buf.append(nxt)
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in ("'", '"', "`"):
            quote = ch
            buf.append(ch)
        elif (ch == "-" and nxt == "-") or ch == "#":
            end = sql.find("\n", i)
            i = n if end == -1 else end
            continue
        elif ch == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            buf.append(" ")
            continue
        elif ch == ";":
            stmt = "".join(buf).strip()
            if stmt:
                statements.append(stmt)
            buf = []
        else:
            buf.append(ch)
        i += 1

    tail = "".join(buf).strip()
    if tail:
        statements.append(tail)
    return statements


# ── AST walking ─────────────────────────────────────────────────────────


def _parse(statement: str) -> Optional[exp.Expression]:
    try:
        return sqlglot.parse_one(statement, read=DIALECT)
    except SqlglotError as exc:
        logger.debug("Skipping unparseable statement (%s): %.80s", exc.__class__.__name__, statement)
        return None


def _target(node: exp.Expression) -> tuple[Optional[exp.Table], List[str]]:
    """Table and explicit column list of a CREATE/INSERT target."""
    target = node.this
    if isinstance(target, exp.Schema):
        table = target.this if isinstance(target.this, exp.Table) else None
        return table, [e.name for e in target.expressions if isinstance(e, (exp.ColumnDef, exp.Identifier, exp.Column))]
    if isinstance(target, exp.Table):
        return target, []
    return None, []


def _is_create_table(node: exp.Expression) -> bool:
    return isinstance(node, exp.Create) and str(node.args.get("kind") or "").upper() == "TABLE"


def _number(text: str) -> Any:
    try:
        return int(text)
    except ValueError:
        try:
            return float(text)
        except ValueError:
            return text


def literal_value(node: exp.Expression) -> Any:
    """Python value of a VALUES cell; unknown node shapes become None."""
    if isinstance(node, exp.Literal):
        return node.this if node.is_string else _number(node.this)
    if isinstance(node, exp.Boolean):
        return node.this
    if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) and not node.this.is_string:
        value = _number(node.this.this)
        return -value if isinstance(value, (int, float)) else None
    return None


def _insert_rows(node: exp.Insert) -> List[List[Any]]:
    values = node.expression
    if not isinstance(values, exp.Values):
        return []
    rows = []
    for tup in values.expressions:
        cells = tup.expressions if isinstance(tup, exp.Tuple) else [tup]
        rows.append([literal_value(cell) for cell in cells])
    return rows


def parse_table_names(sql: str) -> List[str]:
    tables = set()
    for statement in split_statements(sql):
        node = _parse(statement)
        if node is None or not (_is_create_table(node) or isinstance(node, exp.Insert)):
            continue
        table, _ = _target(node)
        if table is not None and table.name:
            tables.add(table.name)
    return sorted(tables)


def parse_table_data(sql: str, table_name: str) -> Dict[str, List[Any]]:
    """
    Returns ``{"headers": [...], "rows": [[...], ...]}`` for one table.
    Rows are padded with None to the column count.
    """
    columns: List[str] = []
    rows: List[List[Any]] = []

    for statement in split_statements(sql):
        node = _parse(statement)
        if node is None:
            continue
        if _is_create_table(node):
            table, defined = _target(node)
            if table is not None and table.name == table_name and defined:
                columns = defined
        elif isinstance(node, exp.Insert):
            table, listed = _target(node)
            if table is None or table.name != table_name:
                continue
            if not columns and listed:
                columns = listed
            for row in _insert_rows(node):
                rows.append(row + [None] * (len(columns) - len(row)))

    if not columns and rows:
        columns = [f"Column{i + 1}" for i in range(len(rows[0]))]
    return {"headers": columns, "rows": rows}


async def extract_table_names(path: str) -> List[str]:
    sql = await asyncio.to_thread(read_dump, path)
    scan_dangerous_keywords(sql)
    return await asyncio.to_thread(parse_table_names, sql)


async def extract_table_data(path: str, table_name: str) -> Dict[str, List[Any]]:
    sql = await asyncio.to_thread(read_dump, path)
    return await asyncio.to_thread(parse_table_data, sql, table_name)


# ── Source ──────────────────────────────────────────────────────────────

DumpPathResolver = Callable[[int], Awaitable[str]]


async def resolve_dump_path(store: Any, file_id: int) -> str:
    """Disk path of an uploaded dump, from its ``uploaded_files`` record."""
    file = await store.get_file_by_id(file_id)
    if file is None:
        raise FileNotFoundError("File not found")
    info = file.get("sourceInfo") or {}
    if info.get("type") != "sql_dump_upload" or not info.get("filePath"):
        raise FileNotFoundError("SQL file not found on server. Please re-upload.")
    return info["filePath"]


class _DumpSession(SourceSession):
    def __init__(self, path: str, table: str):
        self._path = path
        self._table = table
        self._rows: List[List[Any]] = []

    async def columns(self) -> List[ColumnSpec]:
        data = await extract_table_data(self._path, self._table)
        self._rows = data["rows"]
        return [ColumnSpec(name=str(i), display_name=h) for i, h in enumerate(data["headers"])]

    async def records(self, columns: List[ColumnSpec]) -> List[Mapping[str, Any]]:
        return rows_to_items(self._rows)


class SqlDumpTableSource(TableSource):
    """A table lifted out of a previously uploaded dump; a static snapshot."""

    descriptor_model = SqlDumpSource
    refresh_mode = "static"

    def __init__(self, resolve_path: DumpPathResolver):
        self._resolve_path = resolve_path

    @property
    def source_type(self) -> str:
        return "sql_dump"

    @property
    def mime_type(self) -> str:
        return "application/sql"

    def sheet_name(self, descriptor: SqlDumpSource) -> str:
        return descriptor.table

    def default_title(self, descriptor: SqlDumpSource) -> str:
        return f"SQL: {descriptor.table}"

    @asynccontextmanager
    async def open(self, descriptor: SqlDumpSource, credentials: Mapping[str, Any]) -> AsyncIterator[SourceSession]:
        path = await self._resolve_path(descriptor.original_file_id)
        logger.info("Importing table '%s' from SQL dump %s", descriptor.table, path)
        yield _DumpSession(path, descriptor.table)
